from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from dispatch_elig.core.config import get_settings
from dispatch_elig.eligibility.compiler import CompiledQuery, EligibilityQueryCompiler
from dispatch_elig.eligibility.errors import EngineNotInitializedError
from dispatch_elig.eligibility.events import DomainEvent, EventBus, EventType
from dispatch_elig.eligibility.gate import ComponentGate
from dispatch_elig.eligibility.models import (
    AppliedCondition,
    BackfillSummary,
    EligibilityFact,
    EligibilityQueryContext,
    RecomputeResult,
)
from dispatch_elig.eligibility.pipeline import RecomputationPipeline
from dispatch_elig.eligibility.plugin import EligibilityPlugin
from dispatch_elig.eligibility.plugins import build_default_plugins
from dispatch_elig.eligibility.registry import PluginRegistry
from dispatch_elig.eligibility.windows import Clock, make_clock
from dispatch_elig.services.repository import get_repository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EligibleWorkersResult:
    workers: list[dict[str, Any]]
    total: int
    applied_conditions: list[AppliedCondition] = field(default_factory=list)
    explain: str = ""


class EligibilityEngine:
    """Composition root for the dispatch eligibility subsystem.

    Built once per process. Plugins register before ``initialize()``; after
    it, the registry is sealed and recompute and query are allowed.
    """

    def __init__(
        self,
        repository: Any,
        *,
        bus: EventBus | None = None,
        clock: Clock | None = None,
        backfill_concurrency: int = 8,
        component_cache_ttl_seconds: float = 300.0,
    ) -> None:
        self.repository = repository
        self.bus = bus or EventBus()
        self.clock = clock or make_clock("UTC")
        self.gate = ComponentGate(repository.list_component_states, ttl_seconds=component_cache_ttl_seconds)
        self.pipeline = RecomputationPipeline(
            gate=self.gate,
            store=repository,
            backfill_concurrency=backfill_concurrency,
        )
        self.registry = PluginRegistry(bus=self.bus, gate=self.gate, recompute=self.pipeline.recompute)
        self.compiler = EligibilityQueryCompiler(self.registry)
        self.bus.subscribe(EventType.COMPONENT_TOGGLED, self._on_component_toggled)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def register_plugin(self, plugin: EligibilityPlugin) -> None:
        self.registry.register(plugin)

    def register_default_plugins(self) -> None:
        for plugin in build_default_plugins(self.repository, self.gate, self.clock):
            self.registry.register(plugin)
        logger.info("dispatch eligibility plugins registered plugins=%s", self.registry.get_all_plugin_ids())

    async def initialize(self) -> None:
        await self.gate.initialize()
        self.registry.seal()
        for plugin in self.registry.get_all_plugins():
            if not self.gate.is_enabled(plugin.component_id):
                await self.pipeline.purge_category(plugin)
        self._initialized = True
        logger.info("dispatch eligibility engine initialized plugins=%s", self.registry.get_all_plugin_ids())

    async def compile_for_job(self, job_id: str, *, limit: int) -> CompiledQuery:
        self._require_initialized()
        job = await self.repository.get_dispatch_job(job_id)
        context = EligibilityQueryContext(
            job_id=job.id,
            employer_id=job.employer_id,
            job_type_id=job.job_type_id,
            today=self.clock(),
        )
        return self.compiler.compile(context, job.eligibility, limit=limit)

    async def eligible_workers(self, job_id: str, *, limit: int) -> EligibleWorkersResult:
        compiled = await self.compile_for_job(job_id, limit=limit)
        workers, total = await self.repository.fetch_eligible_workers(compiled)
        logger.info(
            "eligible workers job_id=%s conditions=%s returned=%s total=%s",
            job_id,
            [applied.plugin_id for applied in compiled.applied_conditions],
            len(workers),
            total,
        )
        return EligibleWorkersResult(
            workers=workers,
            total=total,
            applied_conditions=compiled.applied_conditions,
            explain=compiled.explain,
        )

    async def backfill(self, plugin_ids: Iterable[str] | None = None) -> BackfillSummary:
        self._require_initialized()
        return await self.pipeline.backfill(self._select_plugins(plugin_ids))

    async def recompute_worker(
        self,
        worker_id: str,
        plugin_ids: Iterable[str] | None = None,
    ) -> list[RecomputeResult | None]:
        self._require_initialized()
        return await self.pipeline.recompute_worker_all(self._select_plugins(plugin_ids), worker_id)

    async def list_worker_facts(self, worker_id: str) -> list[EligibilityFact]:
        return await self.repository.list_facts_by_worker(worker_id)

    def describe_plugins(self) -> list[dict[str, Any]]:
        self._require_initialized()
        return [
            {
                "id": plugin.id,
                "name": plugin.name,
                "description": plugin.description,
                "component_id": plugin.component_id,
                "category": plugin.category,
                "events": [handler.event.value for handler in plugin.event_handlers],
                "active": self.gate.is_enabled(plugin.component_id),
            }
            for plugin in self.registry.get_all_plugins()
        ]

    async def publish(self, event: DomainEvent) -> int:
        return await self.bus.publish(event)

    async def refresh_components(self, *, only_if_stale: bool = False) -> dict[str, bool]:
        """Reload component switches and reconcile the categories of any that flipped."""
        self._require_initialized()
        changes = await (self.gate.refresh_if_stale() if only_if_stale else self.gate.refresh())
        await self._apply_component_changes(changes)
        return changes

    async def roll_over(self) -> BackfillSummary:
        self._require_initialized()
        await self.gate.refresh()
        await self.bus.publish(DomainEvent(event_type=EventType.DAY_ROLLOVER, payload={"day": self.clock().isoformat()}))
        return await self.backfill()

    async def _on_component_toggled(self, event: DomainEvent) -> None:
        component_id = str(event.payload.get("component_id") or "").strip()
        if not component_id or not self._initialized:
            return

        changes = await self.gate.refresh()
        changes.setdefault(component_id, self.gate.is_enabled(component_id))
        await self._apply_component_changes(changes)

    async def _apply_component_changes(self, changes: dict[str, bool]) -> None:
        for component_id, enabled in changes.items():
            plugins = self.registry.get_plugins_for_component(component_id)
            logger.info(
                "component state changed component_id=%s enabled=%s plugins=%s",
                component_id,
                enabled,
                [plugin.id for plugin in plugins],
            )
            for plugin in plugins:
                if enabled:
                    await self.pipeline.backfill([plugin])
                else:
                    await self.pipeline.purge_category(plugin)

    def _select_plugins(self, plugin_ids: Iterable[str] | None) -> list[EligibilityPlugin]:
        if plugin_ids is None:
            return self.registry.get_all_plugins()
        return [self.registry.get_plugin(plugin_id) for plugin_id in plugin_ids]

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise EngineNotInitializedError("dispatch eligibility engine is not initialized")


@lru_cache
def get_engine() -> EligibilityEngine:
    settings = get_settings()
    engine = EligibilityEngine(
        get_repository(),
        clock=make_clock(settings.dispatch_timezone),
        backfill_concurrency=settings.backfill_concurrency,
        component_cache_ttl_seconds=settings.component_cache_ttl_seconds,
    )
    engine.register_default_plugins()
    return engine
