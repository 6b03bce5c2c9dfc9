from fastapi import APIRouter, Depends, HTTPException, status

from dispatch_elig.eligibility.engine import get_engine

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(engine=Depends(get_engine)) -> dict[str, str]:
    if not engine.is_initialized:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="eligibility engine initializing")
    return {"status": "ready"}
