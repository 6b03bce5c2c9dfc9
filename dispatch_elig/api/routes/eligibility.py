import logging

from fastapi import APIRouter, Depends, HTTPException, status

from dispatch_elig.core.security import SCOPE_DISPATCH_ADMIN, SCOPE_DISPATCH_DEBUG, get_principal, require_scopes
from dispatch_elig.eligibility.engine import get_engine
from dispatch_elig.eligibility.errors import EngineNotInitializedError, UnknownPluginError
from dispatch_elig.schemas.eligibility import BackfillOut, BackfillRequest, FactOut, PluginOut, RecomputeOut
from dispatch_elig.services.repository import RepositoryNotFoundError, RepositoryUnavailableError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/plugins", response_model=list[PluginOut])
async def list_plugins(principal=Depends(get_principal), engine=Depends(get_engine)) -> list[PluginOut]:
    require_scopes(principal, {SCOPE_DISPATCH_DEBUG})

    try:
        plugins = engine.describe_plugins()
    except EngineNotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [PluginOut(**plugin) for plugin in plugins]


@router.post("/backfill", response_model=BackfillOut)
async def run_backfill(
    payload: BackfillRequest | None = None,
    principal=Depends(get_principal),
    engine=Depends(get_engine),
) -> BackfillOut:
    require_scopes(principal, {SCOPE_DISPATCH_ADMIN})

    plugin_ids = payload.plugin_ids if payload is not None else None
    logger.info("backfill requested actor=%s plugin_ids=%s", principal.actor, plugin_ids)
    try:
        summary = await engine.backfill(plugin_ids)
    except UnknownPluginError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except (RepositoryUnavailableError, EngineNotInitializedError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return BackfillOut(**summary.as_dict())


@router.post("/workers/{worker_id}/recompute", response_model=list[RecomputeOut])
async def recompute_worker(
    worker_id: str,
    principal=Depends(get_principal),
    engine=Depends(get_engine),
) -> list[RecomputeOut]:
    require_scopes(principal, {SCOPE_DISPATCH_ADMIN})
    logger.info("manual recompute requested actor=%s worker_id=%s", principal.actor, worker_id)

    try:
        results = await engine.recompute_worker(worker_id)
    except EngineNotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    rows: list[RecomputeOut] = []
    for plugin, result in zip(engine.registry.get_all_plugins(), results):
        if result is None:
            rows.append(
                RecomputeOut(worker_id=worker_id, plugin_id=plugin.id, category=plugin.category, failed=True)
            )
            continue
        rows.append(
            RecomputeOut(
                worker_id=result.worker_id,
                plugin_id=result.plugin_id,
                category=result.category,
                removed=result.removed,
                created=result.created,
                total=result.total,
                skipped=result.skipped,
            )
        )
    return rows


@router.get("/workers/{worker_id}/facts", response_model=list[FactOut])
async def list_worker_facts(
    worker_id: str,
    principal=Depends(get_principal),
    engine=Depends(get_engine),
) -> list[FactOut]:
    require_scopes(principal, {SCOPE_DISPATCH_DEBUG})

    try:
        facts = await engine.list_worker_facts(worker_id)
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [FactOut(worker_id=fact.worker_id, category=fact.category, value=fact.value) for fact in facts]
