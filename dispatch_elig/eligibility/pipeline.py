from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from opentelemetry import trace

from dispatch_elig.core.telemetry import traced
from dispatch_elig.eligibility.events import DomainEvent
from dispatch_elig.eligibility.gate import ComponentGate
from dispatch_elig.eligibility.models import BackfillSummary, RecomputeResult
from dispatch_elig.eligibility.plugin import EligibilityPlugin
from dispatch_elig.eligibility.store import FactStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RecomputationPipeline:
    """Runs plugin recomputes for events, manual replays and backfills.

    Recomputes for the same (worker, category) pair are serialized in-process;
    the store transaction serializes them across processes. Failures are
    logged and isolated to the one plugin/worker that raised.
    """

    def __init__(self, *, gate: ComponentGate, store: FactStore, backfill_concurrency: int = 8) -> None:
        self._gate = gate
        self._store = store
        self._backfill_concurrency = max(1, backfill_concurrency)
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

    async def recompute(
        self,
        plugin: EligibilityPlugin,
        worker_id: str,
        event: DomainEvent | None = None,
    ) -> RecomputeResult | None:
        event_type = event.event_type.value if event is not None else None
        try:
            async with self._serialized(worker_id, plugin.category):
                return await plugin.recompute_worker(worker_id)
        except Exception:
            logger.exception(
                "recompute failed plugin_id=%s worker_id=%s category=%s event_type=%s",
                plugin.id,
                worker_id,
                plugin.category,
                event_type,
            )
            return None

    async def recompute_worker_all(
        self,
        plugins: Sequence[EligibilityPlugin],
        worker_id: str,
    ) -> list[RecomputeResult | None]:
        return list(await asyncio.gather(*(self.recompute(plugin, worker_id) for plugin in plugins)))

    async def backfill(self, plugins: Sequence[EligibilityPlugin]) -> BackfillSummary:
        summary = BackfillSummary()
        if not self._gate.is_initialized:
            logger.warning("backfill skipped: component enablement cache is not initialized")
            summary.skipped_plugins = [plugin.id for plugin in plugins]
            return summary

        with traced(tracer, "eligibility.backfill", plugin_count=len(plugins)):
            for plugin in plugins:
                if not self._gate.is_enabled(plugin.component_id):
                    await self.purge_category(plugin)
                    summary.skipped_plugins.append(plugin.id)
                    continue
                if not plugin.supports_backfill:
                    summary.skipped_plugins.append(plugin.id)
                    continue
                await self._backfill_plugin(plugin, summary)

        logger.info(
            "backfill finished workers_processed=%s entries_created=%s failures=%s skipped=%s",
            summary.workers_processed,
            summary.entries_created,
            summary.failures,
            summary.skipped_plugins,
        )
        return summary

    async def purge_category(self, plugin: EligibilityPlugin) -> int:
        removed = await self._store.delete_facts_by_category(plugin.category)
        logger.info("purged facts plugin_id=%s category=%s removed=%s", plugin.id, plugin.category, removed)
        return removed

    async def _backfill_plugin(self, plugin: EligibilityPlugin, summary: BackfillSummary) -> None:
        source_ids = await plugin.backfill_worker_ids()
        holder_ids = await self._store.list_fact_worker_ids(plugin.category)
        worker_ids = sorted(set(source_ids) | set(holder_ids))
        semaphore = asyncio.Semaphore(self._backfill_concurrency)

        async def bounded(worker_id: str) -> RecomputeResult | None:
            async with semaphore:
                return await self.recompute(plugin, worker_id)

        results = await asyncio.gather(*(bounded(worker_id) for worker_id in worker_ids))
        processed = [result for result in results if result is not None and result.skipped is None]
        failures = sum(1 for result in results if result is None)
        summary.add(
            plugin.id,
            workers_processed=len(processed),
            entries_created=sum(result.created for result in processed),
            failures=failures,
        )
        logger.info(
            "backfilled plugin plugin_id=%s candidates=%s processed=%s failures=%s",
            plugin.id,
            len(worker_ids),
            len(processed),
            failures,
        )

    @asynccontextmanager
    async def _serialized(self, worker_id: str, category: str) -> AsyncIterator[None]:
        key = (worker_id, category)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[key] - 1
            if remaining:
                self._lock_users[key] = remaining
            else:
                del self._lock_users[key]
                del self._locks[key]
