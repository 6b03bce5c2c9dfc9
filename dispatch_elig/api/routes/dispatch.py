from fastapi import APIRouter, Depends, HTTPException, Query, status

from dispatch_elig.core.config import Settings, get_settings
from dispatch_elig.core.security import SCOPE_DISPATCH_DEBUG, SCOPE_DISPATCH_READ, get_principal, require_scopes
from dispatch_elig.eligibility.engine import get_engine
from dispatch_elig.eligibility.errors import ConditionCompileError, EngineNotInitializedError
from dispatch_elig.schemas.eligibility import EligibilitySqlOut, EligibleWorkersOut
from dispatch_elig.services.repository import RepositoryNotFoundError, RepositoryUnavailableError

router = APIRouter()


def _resolve_limit(limit: int | None, settings: Settings) -> int:
    if limit is None:
        return settings.default_eligible_limit
    return min(limit, settings.max_eligible_limit)


@router.get("/{job_id}/eligible-workers", response_model=EligibleWorkersOut)
async def list_eligible_workers(
    job_id: str,
    principal=Depends(get_principal),
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
    limit: int | None = Query(default=None, ge=1),
) -> EligibleWorkersOut:
    require_scopes(principal, {SCOPE_DISPATCH_READ})

    try:
        result = await engine.eligible_workers(job_id, limit=_resolve_limit(limit, settings))
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (RepositoryUnavailableError, EngineNotInitializedError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except ConditionCompileError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return EligibleWorkersOut(
        workers=result.workers,
        total=result.total,
        applied_conditions=[applied.as_dict() for applied in result.applied_conditions],
    )


@router.get("/{job_id}/eligible-workers/sql", response_model=EligibilitySqlOut)
async def preview_eligible_workers_sql(
    job_id: str,
    principal=Depends(get_principal),
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
    limit: int | None = Query(default=None, ge=1),
) -> EligibilitySqlOut:
    require_scopes(principal, {SCOPE_DISPATCH_READ, SCOPE_DISPATCH_DEBUG})

    try:
        compiled = await engine.compile_for_job(job_id, limit=_resolve_limit(limit, settings))
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (RepositoryUnavailableError, EngineNotInitializedError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except ConditionCompileError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return EligibilitySqlOut(
        sql=compiled.sql,
        params=compiled.params,
        applied_conditions=[applied.as_dict() for applied in compiled.applied_conditions],
        explain=compiled.explain,
    )
