from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from dispatch_elig.eligibility.errors import PluginRegistrationError, UnknownPluginError
from dispatch_elig.eligibility.events import DomainEvent, EventBus
from dispatch_elig.eligibility.gate import ComponentGate
from dispatch_elig.eligibility.plugin import EligibilityPlugin, EventHandler

logger = logging.getLogger(__name__)

RecomputeHook = Callable[[EligibilityPlugin, str, DomainEvent], Awaitable[Any]]


class PluginRegistry:
    """Holds every eligibility plugin and wires their event interests.

    Constructed once per process. Category ownership is resolved here, at
    registration time, so a duplicate owner fails startup instead of a query.
    """

    def __init__(self, *, bus: EventBus, gate: ComponentGate, recompute: RecomputeHook) -> None:
        self._bus = bus
        self._gate = gate
        self._recompute = recompute
        self._plugins: dict[str, EligibilityPlugin] = {}
        self._by_category: dict[str, EligibilityPlugin] = {}
        self._sealed = False

    def register(self, plugin: EligibilityPlugin) -> None:
        if self._sealed:
            raise PluginRegistrationError(f"registry is sealed; cannot register {plugin.id}")
        if plugin.id in self._plugins:
            raise PluginRegistrationError(f"duplicate plugin id: {plugin.id}")
        owner = self._by_category.get(plugin.category)
        if owner is not None:
            raise PluginRegistrationError(
                f"category {plugin.category!r} already owned by {owner.id}; rejected {plugin.id}"
            )

        self._plugins[plugin.id] = plugin
        self._by_category[plugin.category] = plugin
        for handler in plugin.event_handlers:
            self._bus.subscribe(handler.event, self._subscriber(plugin, handler))

        logger.info(
            "registered eligibility plugin plugin_id=%s category=%s events=%s",
            plugin.id,
            plugin.category,
            [handler.event.value for handler in plugin.event_handlers],
        )

    def seal(self) -> None:
        self._sealed = True

    def get_all_plugin_ids(self) -> list[str]:
        return list(self._plugins)

    def get_all_plugins(self) -> list[EligibilityPlugin]:
        return list(self._plugins.values())

    def get_plugin(self, plugin_id: str) -> EligibilityPlugin:
        plugin = self._plugins.get(plugin_id)
        if plugin is None:
            raise UnknownPluginError(f"unknown plugin: {plugin_id}")
        return plugin

    def get_plugin_for_category(self, category: str) -> EligibilityPlugin | None:
        return self._by_category.get(category)

    def get_plugins_for_component(self, component_id: str) -> list[EligibilityPlugin]:
        return [plugin for plugin in self._plugins.values() if plugin.component_id == component_id]

    def get_active_plugins(self) -> list[EligibilityPlugin]:
        return [plugin for plugin in self._plugins.values() if self._gate.is_enabled(plugin.component_id)]

    def _subscriber(self, plugin: EligibilityPlugin, handler: EventHandler) -> Callable[[DomainEvent], Awaitable[None]]:
        async def on_event(event: DomainEvent) -> None:
            worker_id = handler.get_worker_id(event.payload)
            if not worker_id:
                logger.warning(
                    "event without worker id event_type=%s plugin_id=%s",
                    event.event_type.value,
                    plugin.id,
                )
                return
            await self._recompute(plugin, worker_id, event)

        on_event.__qualname__ = f"{plugin.id}.{handler.event.value}"
        return on_event
