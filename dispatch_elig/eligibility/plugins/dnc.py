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

DNC_CATEGORY = "dnc"


def employer_value(employer_id: str) -> str:
    return f"employer:{employer_id}"


class DispatchDncPlugin(EligibilityPlugin):
    """Do-not-call: a record raised by either side keeps the worker off that employer's jobs."""

    id = "dispatch_dnc"
    name = "Do Not Call"
    description = "Excludes workers with a do-not-call record against the job's employer"
    component_id = "dispatch.dnc"
    category = DNC_CATEGORY
    event_handlers = (
        EventHandler(EventType.DISPATCH_DNC_SAVED),
        EventHandler(EventType.DISPATCH_DNC_DELETED),
    )
    supports_backfill = True

    def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        if not context.employer_id:
            return None
        return EligibilityCondition(
            category=DNC_CATEGORY,
            type=ConditionType.NOT_EXISTS,
            value=employer_value(context.employer_id),
        )

    async def derive_facts(self, worker_id: str, *, conn: Any) -> list[EligibilityFact]:
        records = await self.store.list_worker_dnc(worker_id, conn=conn)
        employer_ids = sorted({str(record["employer_id"]) for record in records if record.get("employer_id")})
        return [self.fact(worker_id, employer_value(employer_id)) for employer_id in employer_ids]

    async def backfill_worker_ids(self) -> list[str]:
        return await self.store.list_dnc_worker_ids()
