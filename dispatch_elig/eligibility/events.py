"""In-process domain event bus.

Events are dirty bits: subscribers re-read authoritative state instead of
trusting payload contents beyond the identifiers they need.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    WORKER_BAN_SAVED = "worker_ban_saved"
    WORKER_BAN_DELETED = "worker_ban_deleted"
    DISPATCH_DNC_SAVED = "dispatch_dnc_saved"
    DISPATCH_DNC_DELETED = "dispatch_dnc_deleted"
    DISPATCH_HFE_SAVED = "dispatch_hfe_saved"
    DISPATCH_HFE_DELETED = "dispatch_hfe_deleted"
    WORKER_STATUS_CHANGED = "worker_status_changed"
    WORKER_DISPATCH_STATUS_SAVED = "worker_dispatch_status_saved"
    COMPONENT_TOGGLED = "component_toggled"
    DAY_ROLLOVER = "day_rollover"


@dataclass(frozen=True, slots=True)
class DomainEvent:
    event_type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandlerFn = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[EventType, list[EventHandlerFn]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: EventHandlerFn) -> None:
        self._subscribers[event_type].append(handler)

    async def publish(self, event: DomainEvent) -> int:
        handlers = list(self._subscribers.get(event.event_type, []))
        if not handlers:
            return 0

        results = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, BaseException):
                logger.error(
                    "event subscriber failed event_type=%s handler=%s",
                    event.event_type.value,
                    getattr(handler, "__qualname__", repr(handler)),
                    exc_info=result,
                )
        return len(handlers)
