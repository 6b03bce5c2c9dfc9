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
from dispatch_elig.eligibility.plugins.dnc import employer_value
from dispatch_elig.eligibility.windows import is_day_on_or_after

HFE_CATEGORY = "hfe"


class DispatchHfePlugin(EligibilityPlugin):
    """Hold for employer: a held worker is only offered the holding employer's jobs.

    A hold lasts through its ``hold_until`` day, evaluated at recompute time;
    the daily rollover backfill retires holds once that day has passed.
    """

    id = "dispatch_hfe"
    name = "Hold For Employer"
    description = "Excludes workers currently held for a different employer"
    component_id = "dispatch.hfe"
    category = HFE_CATEGORY
    event_handlers = (
        EventHandler(EventType.DISPATCH_HFE_SAVED),
        EventHandler(EventType.DISPATCH_HFE_DELETED),
    )
    supports_backfill = True

    def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        return EligibilityCondition(
            category=HFE_CATEGORY,
            type=ConditionType.NOT_EXISTS_CATEGORY,
            value=employer_value("*"),
            except_value=employer_value(context.employer_id) if context.employer_id else None,
        )

    async def derive_facts(self, worker_id: str, *, conn: Any) -> list[EligibilityFact]:
        today = self.clock()
        holds = await self.store.list_worker_holds(worker_id, conn=conn)
        employer_ids = sorted(
            {
                str(hold["employer_id"])
                for hold in holds
                if hold.get("employer_id") and is_day_on_or_after(hold.get("hold_until"), today)
            }
        )
        return [self.fact(worker_id, employer_value(employer_id)) for employer_id in employer_ids]

    async def backfill_worker_ids(self) -> list[str]:
        return await self.store.list_active_hold_worker_ids(today=self.clock())
