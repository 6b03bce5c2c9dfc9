from __future__ import annotations

from typing import Any

from dispatch_elig.eligibility.events import EventType
from dispatch_elig.eligibility.models import (
    ConditionType,
    EligibilityCondition,
    EligibilityFact,
    EligibilityQueryContext,
)
from dispatch_elig.eligibility.plugin import EligibilityPlugin, EventHandler

DISPATCH_STATUS_CATEGORY = "dispatch_status"
AVAILABLE = "available"
NOT_AVAILABLE = "not_available"


class DispatchStatusPlugin(EligibilityPlugin):
    """Workers who marked themselves not available are never offered jobs.

    A worker without a dispatch status row counts as available, so only
    unavailable workers carry a fact.
    """

    id = "dispatch_status"
    name = "Dispatch Availability"
    description = "Excludes workers whose dispatch status is not available"
    component_id = "dispatch.status"
    category = DISPATCH_STATUS_CATEGORY
    event_handlers = (EventHandler(EventType.WORKER_DISPATCH_STATUS_SAVED),)
    supports_backfill = True

    def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        return EligibilityCondition(
            category=DISPATCH_STATUS_CATEGORY,
            type=ConditionType.NOT_EXISTS,
            value=NOT_AVAILABLE,
        )

    async def derive_facts(self, worker_id: str, *, conn: Any) -> list[EligibilityFact]:
        status = await self.store.get_worker_dispatch_status(worker_id, conn=conn)
        if status is None or status == AVAILABLE:
            return []
        return [self.fact(worker_id, NOT_AVAILABLE)]

    async def backfill_worker_ids(self) -> list[str]:
        return await self.store.list_unavailable_worker_ids()
