from __future__ import annotations

import logging
from typing import Any

from dispatch_elig.eligibility.events import EventType
from dispatch_elig.eligibility.models import (
    ConditionType,
    EligibilityCondition,
    EligibilityFact,
    EligibilityQueryContext,
)
from dispatch_elig.eligibility.plugin import EligibilityPlugin, EventHandler

logger = logging.getLogger(__name__)

WORK_STATUS_CATEGORY = "work_status"


def allowed_status_ids(config: dict[str, Any]) -> tuple[str, ...] | None:
    raw = config.get("allowed_status_ids", config.get("allowedStatusIds"))
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise ValueError("allowed_status_ids must be a list")
    values = tuple(dict.fromkeys(str(item).strip() for item in raw if str(item).strip()))
    return values or None


class DispatchWorkStatusPlugin(EligibilityPlugin):
    """Worker must currently hold one of the job type's allowed work statuses.

    The query tests the worker's scalar status column; the mirrored fact keeps
    the category's contents traceable to the status it was derived from.
    """

    id = "dispatch_work_status"
    name = "Work Status"
    description = "Includes only workers whose work status is allowed for the job type"
    component_id = "dispatch.work_status"
    category = WORK_STATUS_CATEGORY
    event_handlers = (EventHandler(EventType.WORKER_STATUS_CHANGED),)
    supports_backfill = True

    def get_eligibility_condition(
        self,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        try:
            allowed = allowed_status_ids(config)
        except ValueError as exc:
            logger.warning(
                "ignoring misconfigured work status rule job_id=%s job_type_id=%s error=%s",
                context.job_id,
                context.job_type_id,
                exc,
            )
            return None
        if allowed is None:
            return None
        return EligibilityCondition(category=WORK_STATUS_CATEGORY, type=ConditionType.EQUALS, value=allowed)

    async def derive_facts(self, worker_id: str, *, conn: Any) -> list[EligibilityFact]:
        status_id = await self.store.get_worker_status_id(worker_id, conn=conn)
        if not status_id:
            return []
        return [self.fact(worker_id, status_id)]

    async def backfill_worker_ids(self) -> list[str]:
        return await self.store.list_worker_ids_with_status()
