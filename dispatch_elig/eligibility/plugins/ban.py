from __future__ import annotations

from datetime import date
from typing import Any

from dispatch_elig.eligibility.events import EventType
from dispatch_elig.eligibility.models import (
    ConditionType,
    EligibilityCondition,
    EligibilityFact,
    EligibilityQueryContext,
)
from dispatch_elig.eligibility.plugin import EligibilityPlugin, EventHandler
from dispatch_elig.eligibility.windows import is_day_window_active

BAN_CATEGORY = "ban"
DISPATCH_BAN_TYPE = "dispatch"
DISPATCH_BAN_PREFIX = "dispatch:"


def is_ban_currently_active(ban: dict[str, Any], today: date) -> bool:
    return is_day_window_active(ban.get("start_date"), ban.get("end_date"), today)


class DispatchBanPlugin(EligibilityPlugin):
    id = "dispatch_ban"
    name = "Worker Ban"
    description = "Excludes workers who have an active dispatch ban"
    component_id = "dispatch.ban"
    category = BAN_CATEGORY
    event_handlers = (
        EventHandler(EventType.WORKER_BAN_SAVED),
        EventHandler(EventType.WORKER_BAN_DELETED),
    )
    supports_backfill = True

    def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        return EligibilityCondition(
            category=BAN_CATEGORY,
            type=ConditionType.NOT_EXISTS_CATEGORY,
            value=f"{DISPATCH_BAN_PREFIX}*",
        )

    async def derive_facts(self, worker_id: str, *, conn: Any) -> list[EligibilityFact]:
        today = self.clock()
        bans = await self.store.list_worker_bans(worker_id, conn=conn)
        return [
            self.fact(worker_id, f"{DISPATCH_BAN_PREFIX}{ban['id']}")
            for ban in bans
            if ban.get("type") == DISPATCH_BAN_TYPE and is_ban_currently_active(ban, today)
        ]

    async def backfill_worker_ids(self) -> list[str]:
        return await self.store.list_active_ban_worker_ids(ban_type=DISPATCH_BAN_TYPE, today=self.clock())
