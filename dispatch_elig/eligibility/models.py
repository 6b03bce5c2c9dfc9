from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

WILDCARD = "*"


class ConditionType(str, Enum):
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    NOT_EXISTS_CATEGORY = "not_exists_category"
    EQUALS = "equals"


@dataclass(frozen=True, slots=True)
class EligibilityFact:
    worker_id: str
    category: str
    value: str


@dataclass(frozen=True, slots=True)
class EligibilityCondition:
    """Query-time predicate over the fact store or a worker attribute.

    ``value`` is a single comparand, or a tuple for membership tests.
    ``except_value`` only applies to ``not_exists_category`` and exempts one
    exact fact value from the prefix match.
    """

    category: str
    type: ConditionType
    value: str | tuple[str, ...]
    except_value: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "category": self.category,
            "type": self.type.value,
            "value": list(self.value) if isinstance(self.value, tuple) else self.value,
        }
        if self.except_value is not None:
            payload["except_value"] = self.except_value
        return payload


@dataclass(frozen=True, slots=True)
class AppliedCondition:
    plugin_id: str
    plugin_name: str
    condition: EligibilityCondition

    def as_dict(self) -> dict[str, Any]:
        return {
            "plugin_id": self.plugin_id,
            "plugin_name": self.plugin_name,
            "condition": self.condition.as_dict(),
        }


@dataclass(frozen=True, slots=True)
class EligibilityQueryContext:
    job_id: str
    employer_id: str | None
    job_type_id: str | None
    today: date


@dataclass(slots=True)
class JobEligibilityConfig:
    """Per job type: which plugins apply, and each one's config."""

    plugins: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: Any) -> JobEligibilityConfig:
        if not isinstance(raw, dict):
            return cls()
        entries = raw.get("plugins")
        if not isinstance(entries, list):
            return cls()

        plugins: dict[str, dict[str, Any]] = {}
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            plugin_id = entry.get("plugin_id") or entry.get("pluginId")
            if not isinstance(plugin_id, str) or not plugin_id.strip():
                continue
            if entry.get("enabled") is False:
                continue
            config = entry.get("config")
            plugins[plugin_id.strip()] = dict(config) if isinstance(config, dict) else {}
        return cls(plugins=plugins)

    def config_for(self, plugin_id: str) -> dict[str, Any] | None:
        return self.plugins.get(plugin_id)


@dataclass(slots=True)
class DispatchJobRecord:
    id: str
    employer_id: str | None
    job_type_id: str | None
    title: str | None
    eligibility: JobEligibilityConfig


@dataclass(slots=True)
class RecomputeResult:
    worker_id: str
    plugin_id: str
    category: str
    removed: int = 0
    created: int = 0
    total: int = 0
    skipped: str | None = None


@dataclass(slots=True)
class BackfillSummary:
    workers_processed: int = 0
    entries_created: int = 0
    failures: int = 0
    skipped_plugins: list[str] = field(default_factory=list)
    plugins: dict[str, dict[str, int]] = field(default_factory=dict)

    def add(self, plugin_id: str, *, workers_processed: int, entries_created: int, failures: int) -> None:
        self.workers_processed += workers_processed
        self.entries_created += entries_created
        self.failures += failures
        self.plugins[plugin_id] = {
            "workers_processed": workers_processed,
            "entries_created": entries_created,
            "failures": failures,
        }

    def as_dict(self) -> dict[str, Any]:
        return {
            "workers_processed": self.workers_processed,
            "entries_created": self.entries_created,
            "failures": self.failures,
            "skipped_plugins": list(self.skipped_plugins),
            "plugins": {key: dict(value) for key, value in self.plugins.items()},
        }
