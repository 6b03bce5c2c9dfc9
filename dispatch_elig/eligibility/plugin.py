from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar

from opentelemetry import trace

from dispatch_elig.core.telemetry import traced
from dispatch_elig.eligibility.events import EventType
from dispatch_elig.eligibility.gate import ComponentGate
from dispatch_elig.eligibility.models import (
    EligibilityCondition,
    EligibilityFact,
    EligibilityQueryContext,
    RecomputeResult,
)
from dispatch_elig.eligibility.store import FactStore
from dispatch_elig.eligibility.windows import Clock

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def worker_id_from_payload(payload: dict[str, Any]) -> str | None:
    value = payload.get("worker_id")
    if value is None:
        value = payload.get("workerId")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True, slots=True)
class EventHandler:
    event: EventType
    get_worker_id: Callable[[dict[str, Any]], str | None] = worker_id_from_payload


class EligibilityPlugin(ABC):
    """One independently owned rule family.

    Subclasses own exactly one fact category. ``recompute_worker`` always
    replaces the worker's full fact set in that category inside one
    transaction; ``get_eligibility_condition`` only describes a predicate.
    """

    id: ClassVar[str]
    name: ClassVar[str]
    description: ClassVar[str]
    component_id: ClassVar[str]
    category: ClassVar[str]
    event_handlers: ClassVar[tuple[EventHandler, ...]] = ()
    supports_backfill: ClassVar[bool] = False

    def __init__(self, store: FactStore, gate: ComponentGate, clock: Clock) -> None:
        self.store = store
        self.gate = gate
        self.clock = clock

    @abstractmethod
    def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        """Return the predicate for this query, or None to impose no restriction."""

    @abstractmethod
    async def derive_facts(self, worker_id: str, *, conn: Any) -> list[EligibilityFact]:
        """Re-read the authoritative source and return the worker's current facts."""

    async def backfill_worker_ids(self) -> list[str]:
        return []

    def fact(self, worker_id: str, value: str) -> EligibilityFact:
        return EligibilityFact(worker_id=worker_id, category=self.category, value=value)

    async def recompute_worker(self, worker_id: str) -> RecomputeResult:
        result = RecomputeResult(worker_id=worker_id, plugin_id=self.id, category=self.category)
        if not self.gate.is_initialized:
            logger.warning(
                "skipping recompute before enablement cache init plugin_id=%s worker_id=%s",
                self.id,
                worker_id,
            )
            result.skipped = "gate_not_initialized"
            return result

        with traced(tracer, "eligibility.recompute", worker_id=worker_id, plugin_id=self.id, category=self.category):
            async with self.store.recompute_transaction(worker_id, self.category) as conn:
                removed = await self.store.delete_facts_by_worker_and_category(worker_id, self.category, conn=conn)
                result.removed = len(removed)
                if not self.gate.is_enabled(self.component_id):
                    result.skipped = "component_disabled"
                    logger.debug(
                        "cleared facts for disabled component plugin_id=%s worker_id=%s removed=%s",
                        self.id,
                        worker_id,
                        result.removed,
                    )
                    return result

                facts = self._validated(worker_id, await self.derive_facts(worker_id, conn=conn))
                if facts:
                    await self.store.create_facts(facts, conn=conn)

        result.total = len(facts)
        result.created = len({fact.value for fact in facts} - set(removed))
        logger.debug(
            "recomputed facts plugin_id=%s worker_id=%s removed=%s total=%s created=%s",
            self.id,
            worker_id,
            result.removed,
            result.total,
            result.created,
        )
        return result

    def _validated(self, worker_id: str, facts: list[EligibilityFact]) -> list[EligibilityFact]:
        unique: dict[str, EligibilityFact] = {}
        for fact in facts:
            if fact.worker_id != worker_id or fact.category != self.category:
                raise ValueError(
                    f"plugin {self.id} produced fact outside its scope: "
                    f"worker_id={fact.worker_id} category={fact.category}"
                )
            unique.setdefault(fact.value, fact)
        return list(unique.values())
