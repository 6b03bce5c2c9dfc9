from __future__ import annotations

from collections.abc import Callable
from datetime import date

import pytest

from dispatch_elig.eligibility.engine import EligibilityEngine
from dispatch_elig.eligibility.windows import Clock
from tests.fakes import TODAY, FakeEligibilityRepository


@pytest.fixture
def repo() -> FakeEligibilityRepository:
    return FakeEligibilityRepository()


@pytest.fixture
def make_engine() -> Callable[..., EligibilityEngine]:
    def factory(
        repository: FakeEligibilityRepository,
        *,
        today: date = TODAY,
        clock: Clock | None = None,
    ) -> EligibilityEngine:
        engine = EligibilityEngine(repository, clock=clock or (lambda: today), backfill_concurrency=2)
        engine.register_default_plugins()
        return engine

    return factory
