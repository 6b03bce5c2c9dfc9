from __future__ import annotations

from typing import Any

from dispatch_elig.eligibility.gate import ComponentGate
from dispatch_elig.eligibility.plugin import EligibilityPlugin
from dispatch_elig.eligibility.plugins.ban import DispatchBanPlugin
from dispatch_elig.eligibility.plugins.dnc import DispatchDncPlugin
from dispatch_elig.eligibility.plugins.dispatch_status import DispatchStatusPlugin
from dispatch_elig.eligibility.plugins.hfe import DispatchHfePlugin
from dispatch_elig.eligibility.plugins.work_status import DispatchWorkStatusPlugin
from dispatch_elig.eligibility.windows import Clock

DEFAULT_PLUGIN_TYPES: tuple[type[EligibilityPlugin], ...] = (
    DispatchBanPlugin,
    DispatchDncPlugin,
    DispatchHfePlugin,
    DispatchStatusPlugin,
    DispatchWorkStatusPlugin,
)


def build_default_plugins(store: Any, gate: ComponentGate, clock: Clock) -> list[EligibilityPlugin]:
    return [plugin_type(store, gate, clock) for plugin_type in DEFAULT_PLUGIN_TYPES]


__all__ = [
    "DEFAULT_PLUGIN_TYPES",
    "DispatchBanPlugin",
    "DispatchDncPlugin",
    "DispatchHfePlugin",
    "DispatchStatusPlugin",
    "DispatchWorkStatusPlugin",
    "build_default_plugins",
]
