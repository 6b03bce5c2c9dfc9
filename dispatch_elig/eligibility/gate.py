from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from dispatch_elig.eligibility.errors import EngineNotInitializedError

logger = logging.getLogger(__name__)

ComponentLoader = Callable[[], Awaitable[dict[str, bool]]]


class ComponentGate:
    """Process-local cache of per-deployment component switches.

    Nothing may recompute or query before ``initialize()`` has loaded the
    cache: an unknown state is never treated as enabled or disabled.
    """

    def __init__(self, loader: ComponentLoader, *, ttl_seconds: float = 300.0) -> None:
        self._loader = loader
        self._ttl_seconds = max(0.0, ttl_seconds)
        self._states: dict[str, bool] | None = None
        self._loaded_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._states is not None

    async def initialize(self) -> None:
        await self.refresh()

    async def refresh(self) -> dict[str, bool]:
        """Reload the cache and return the components whose state flipped since the last load."""
        async with self._lock:
            previous = self._states
            states = await self._loader()
            self._states = {str(key): bool(value) for key, value in states.items()}
            self._loaded_at = time.monotonic()
            current = self._states
        logger.info(
            "component enablement cache loaded enabled=%s",
            sorted(key for key, value in current.items() if value),
        )
        if previous is None:
            return {}
        return {
            component_id: current.get(component_id, False)
            for component_id in sorted(set(previous) | set(current))
            if previous.get(component_id, False) != current.get(component_id, False)
        }

    async def refresh_if_stale(self) -> dict[str, bool]:
        if self._states is not None and time.monotonic() - self._loaded_at < self._ttl_seconds:
            return {}
        return await self.refresh()

    def is_enabled(self, component_id: str) -> bool:
        if self._states is None:
            raise EngineNotInitializedError("component enablement cache is not initialized")
        return self._states.get(component_id, False)
