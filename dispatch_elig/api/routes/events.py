import logging

from fastapi import APIRouter, Depends, status

from dispatch_elig.core.security import SCOPE_EVENTS_WRITE, get_principal, require_scopes
from dispatch_elig.eligibility.engine import get_engine
from dispatch_elig.eligibility.events import DomainEvent
from dispatch_elig.schemas.eligibility import EventAcceptedOut, EventIn

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=EventAcceptedOut, status_code=status.HTTP_202_ACCEPTED)
async def publish_event(
    payload: EventIn,
    principal=Depends(get_principal),
    engine=Depends(get_engine),
) -> EventAcceptedOut:
    require_scopes(principal, {SCOPE_EVENTS_WRITE})

    subscribers = await engine.publish(DomainEvent(event_type=payload.event_type, payload=payload.payload))
    logger.info(
        "event accepted event_type=%s actor=%s subscribers=%s",
        payload.event_type.value,
        principal.actor,
        subscribers,
    )
    return EventAcceptedOut(event_type=payload.event_type, subscribers=subscribers)
