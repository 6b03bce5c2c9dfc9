from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Protocol

from dispatch_elig.eligibility.models import EligibilityFact


@dataclass(frozen=True, slots=True)
class FactTableShape:
    """Names the compiler needs to reference the fact store and worker table."""

    fact_table: str = "worker_dispatch_elig_denorm"
    worker_column: str = "worker_id"
    category_column: str = "category"
    value_column: str = "value"
    worker_table: str = "workers"
    worker_id_column: str = "id"
    worker_name_column: str = "display_name"
    worker_status_column: str = "denorm_ws_id"


FACT_TABLE_SHAPE = FactTableShape()

# Scalar worker attributes an ``equals`` condition may target.
WORKER_ATTRIBUTE_COLUMNS: dict[str, str] = {
    "work_status": FACT_TABLE_SHAPE.worker_status_column,
}


class FactStore(Protocol):
    def recompute_transaction(self, worker_id: str, category: str) -> AbstractAsyncContextManager[Any]:
        """Atomic scope for one (worker, category) replace; yields a connection."""

    async def delete_facts_by_worker_and_category(
        self,
        worker_id: str,
        category: str,
        *,
        conn: Any | None = None,
    ) -> list[str]:
        """Delete and return the removed fact values."""

    async def create_facts(self, facts: Sequence[EligibilityFact], *, conn: Any | None = None) -> int:
        ...

    async def list_facts_by_worker(self, worker_id: str) -> list[EligibilityFact]:
        ...

    async def list_fact_worker_ids(self, category: str) -> list[str]:
        ...

    async def delete_facts_by_category(self, category: str) -> int:
        ...
