from __future__ import annotations

import asyncio
import logging
import random
from datetime import date

from opentelemetry import trace

from dispatch_elig.core.config import Settings
from dispatch_elig.core.telemetry import traced

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def day_changed(last_day: date | None, today: date) -> bool:
    return last_day is not None and today != last_day


async def run_rollover_cycle(engine, last_day: date | None) -> date:
    """Refresh the enablement cache and, on a new day, reconcile every plugin."""
    today = engine.clock()
    with traced(tracer, "rollover.cycle", day=today.isoformat()):
        await engine.refresh_components(only_if_stale=True)
        if day_changed(last_day, today):
            summary = await engine.roll_over()
            logger.info(
                "day rollover reconciled day=%s workers_processed=%s entries_created=%s failures=%s",
                today.isoformat(),
                summary.workers_processed,
                summary.entries_created,
                summary.failures,
            )
    return today


async def run_rollover_loop(engine, settings: Settings, *, stop: asyncio.Event | None = None) -> None:
    stop = stop or asyncio.Event()
    last_day: date | None = engine.clock()
    backoff = settings.rollover_poll_interval_seconds

    while not stop.is_set():
        try:
            last_day = await run_rollover_cycle(engine, last_day)
            backoff = settings.rollover_poll_interval_seconds
            sleep_for = settings.rollover_poll_interval_seconds
        except Exception as exc:  # pragma: no cover - loop robustness
            jitter = random.uniform(0.0, 0.5)
            sleep_for = min(backoff * (2.0 + jitter), settings.rollover_max_backoff_seconds)
            logger.exception("rollover iteration failed: %s; retry in %.1fs", exc, sleep_for)
            backoff = sleep_for

        try:
            await asyncio.wait_for(stop.wait(), timeout=sleep_for)
        except asyncio.TimeoutError:
            continue
