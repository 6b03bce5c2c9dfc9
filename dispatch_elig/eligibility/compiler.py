from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace

from dispatch_elig.core.telemetry import traced
from dispatch_elig.eligibility.errors import ConditionCompileError
from dispatch_elig.eligibility.models import (
    AppliedCondition,
    EligibilityCondition,
    EligibilityQueryContext,
    JobEligibilityConfig,
)
from dispatch_elig.eligibility.query import PredicateNode, condition_to_node, render_explain, render_sql
from dispatch_elig.eligibility.registry import PluginRegistry
from dispatch_elig.eligibility.store import FACT_TABLE_SHAPE, FactTableShape

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class CompiledQuery:
    sql: str
    params: list[Any]
    applied_conditions: list[AppliedCondition] = field(default_factory=list)
    explain: str = ""


class EligibilityQueryCompiler:
    """Turns the active plugins' conditions for one job into one SQL statement.

    Stateless per call. The list surface and the SQL preview surface both go
    through ``compile`` so the previewed statement is the executed one.
    """

    def __init__(self, registry: PluginRegistry, *, shape: FactTableShape = FACT_TABLE_SHAPE) -> None:
        self._registry = registry
        self._shape = shape

    def compile(
        self,
        context: EligibilityQueryContext,
        job_config: JobEligibilityConfig,
        *,
        limit: int,
    ) -> CompiledQuery:
        with traced(tracer, "eligibility.compile", job_id=context.job_id, job_type_id=context.job_type_id) as span:
            applied: list[AppliedCondition] = []
            nodes: list[PredicateNode] = []
            for plugin in self._registry.get_active_plugins():
                config = job_config.config_for(plugin.id)
                if config is None:
                    continue
                condition = self._condition_for(plugin.id, plugin.category, context, config)
                if condition is None:
                    continue
                try:
                    nodes.append(condition_to_node(condition))
                except ValueError as exc:
                    raise ConditionCompileError(plugin.id, str(exc)) from exc
                applied.append(AppliedCondition(plugin_id=plugin.id, plugin_name=plugin.name, condition=condition))

            params: list[Any] = []

            def bind(value: Any) -> str:
                params.append(value)
                return f"${len(params)}"

            shape = self._shape
            where_sql = render_sql(nodes, bind, shape=shape)
            limit_token = bind(limit)
            sql = "\n".join(
                [
                    "select",
                    f"  w.{shape.worker_id_column}::text as id,",
                    f"  w.{shape.worker_name_column} as display_name,",
                    f"  w.{shape.worker_status_column}::text as work_status_id,",
                    "  count(*) over () as total",
                    f"from {shape.worker_table} w",
                    f"where {where_sql}",
                    f"order by w.{shape.worker_name_column} asc nulls last, w.{shape.worker_id_column} asc",
                    f"limit {limit_token}",
                ]
            )
            span.set_attribute("eligibility.conditions", len(applied))
            return CompiledQuery(sql=sql, params=params, applied_conditions=applied, explain=render_explain(nodes))

    def _condition_for(
        self,
        plugin_id: str,
        category: str,
        context: EligibilityQueryContext,
        config: dict[str, Any],
    ) -> EligibilityCondition | None:
        plugin = self._registry.get_plugin(plugin_id)
        try:
            condition = plugin.get_eligibility_condition(context, config)
        except Exception as exc:
            logger.exception(
                "eligibility condition failed plugin_id=%s job_id=%s",
                plugin_id,
                context.job_id,
            )
            raise ConditionCompileError(plugin_id, f"condition failed: {exc}") from exc

        if condition is None:
            return None
        if not isinstance(condition, EligibilityCondition):
            raise ConditionCompileError(plugin_id, f"returned {type(condition).__name__}, not a condition")
        if condition.category != category:
            raise ConditionCompileError(
                plugin_id,
                f"condition category {condition.category!r} is not owned by this plugin ({category!r})",
            )
        return condition
