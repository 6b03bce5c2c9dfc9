from typing import Any

from pydantic import BaseModel, Field

from dispatch_elig.eligibility.events import EventType


class ConditionOut(BaseModel):
    category: str
    type: str
    value: str | list[str]
    except_value: str | None = None


class AppliedConditionOut(BaseModel):
    plugin_id: str
    plugin_name: str
    condition: ConditionOut


class EligibleWorkerOut(BaseModel):
    id: str
    display_name: str | None = None
    work_status_id: str | None = None


class EligibleWorkersOut(BaseModel):
    workers: list[EligibleWorkerOut] = Field(default_factory=list)
    total: int
    applied_conditions: list[AppliedConditionOut] = Field(default_factory=list)


class EligibilitySqlOut(BaseModel):
    sql: str
    params: list[Any] = Field(default_factory=list)
    applied_conditions: list[AppliedConditionOut] = Field(default_factory=list)
    explain: str


class BackfillRequest(BaseModel):
    plugin_ids: list[str] | None = None


class BackfillOut(BaseModel):
    workers_processed: int
    entries_created: int
    failures: int
    skipped_plugins: list[str] = Field(default_factory=list)
    plugins: dict[str, dict[str, int]] = Field(default_factory=dict)


class RecomputeOut(BaseModel):
    worker_id: str
    plugin_id: str
    category: str
    removed: int = 0
    created: int = 0
    total: int = 0
    skipped: str | None = None
    failed: bool = False


class FactOut(BaseModel):
    worker_id: str
    category: str
    value: str


class PluginOut(BaseModel):
    id: str
    name: str
    description: str
    component_id: str
    category: str
    events: list[str] = Field(default_factory=list)
    active: bool


class EventIn(BaseModel):
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)


class EventAcceptedOut(BaseModel):
    event_type: EventType
    subscribers: int
