from fastapi import APIRouter

from dispatch_elig.api.routes import dispatch, eligibility, events, health

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(dispatch.router, prefix="/dispatch/jobs", tags=["dispatch"])
api_router.include_router(eligibility.router, prefix="/dispatch/eligibility", tags=["operations"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
