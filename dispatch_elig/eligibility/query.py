"""Predicate IR for eligible-worker queries and its renderers.

Every plugin condition becomes one typed node. Only ``render_sql`` produces
SQL, and it binds every comparand as a parameter; identifiers come from
``FactTableShape`` and ``WORKER_ATTRIBUTE_COLUMNS`` only.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Union

from dispatch_elig.eligibility.models import WILDCARD, ConditionType, EligibilityCondition
from dispatch_elig.eligibility.store import FACT_TABLE_SHAPE, WORKER_ATTRIBUTE_COLUMNS, FactTableShape

Bind = Callable[[Any], str]


@dataclass(frozen=True, slots=True)
class FactExists:
    category: str
    values: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class FactNotExists:
    category: str
    values: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class FactPrefixNotExists:
    category: str
    prefix: str
    except_value: str | None = None


@dataclass(frozen=True, slots=True)
class AttributeIn:
    attribute: str
    column: str
    values: tuple[str, ...]


PredicateNode = Union[FactExists, FactNotExists, FactPrefixNotExists, AttributeIn]


def condition_to_node(condition: EligibilityCondition) -> PredicateNode:
    if not isinstance(condition.category, str) or not condition.category:
        raise ValueError("condition category must be a non-empty string")

    values = _as_values(condition.value)
    if condition.type is ConditionType.EXISTS:
        return FactExists(category=condition.category, values=values)
    if condition.type is ConditionType.NOT_EXISTS:
        return FactNotExists(category=condition.category, values=values)
    if condition.type is ConditionType.NOT_EXISTS_CATEGORY:
        if len(values) != 1:
            raise ValueError("not_exists_category takes a single value pattern")
        prefix, separator, _ = values[0].partition(WILDCARD)
        if not separator:
            raise ValueError(f"not_exists_category value must contain {WILDCARD!r}: {values[0]!r}")
        return FactPrefixNotExists(
            category=condition.category,
            prefix=prefix,
            except_value=condition.except_value,
        )
    if condition.type is ConditionType.EQUALS:
        column = WORKER_ATTRIBUTE_COLUMNS.get(condition.category)
        if column is None:
            raise ValueError(f"equals condition targets unknown worker attribute: {condition.category!r}")
        return AttributeIn(attribute=condition.category, column=column, values=values)
    raise ValueError(f"unsupported condition type: {condition.type!r}")


def render_sql(
    nodes: Sequence[PredicateNode],
    bind: Bind,
    *,
    shape: FactTableShape = FACT_TABLE_SHAPE,
    worker_alias: str = "w",
) -> str:
    if not nodes:
        return "true"
    return " and ".join(_render_node(node, bind, shape, worker_alias) for node in nodes)


def render_explain(nodes: Sequence[PredicateNode]) -> str:
    if not nodes:
        return "ALL workers"
    return " AND ".join(_explain_node(node) for node in nodes)


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_values(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    values = tuple(value)
    if not values or not all(isinstance(item, str) for item in values):
        raise ValueError("condition value must be a string or a non-empty sequence of strings")
    return values


def _fact_subquery(category: str, bind: Bind, shape: FactTableShape, worker_alias: str) -> str:
    return (
        f"select 1 from {shape.fact_table} f "
        f"where f.{shape.worker_column} = {worker_alias}.{shape.worker_id_column} "
        f"and f.{shape.category_column} = {bind(category)}"
    )


def _value_match(values: tuple[str, ...], bind: Bind, shape: FactTableShape) -> str:
    if len(values) == 1:
        return f" and f.{shape.value_column} = {bind(values[0])}"
    return f" and f.{shape.value_column} = any({bind(list(values))}::text[])"


def _render_node(node: PredicateNode, bind: Bind, shape: FactTableShape, worker_alias: str) -> str:
    if isinstance(node, FactExists):
        subquery = _fact_subquery(node.category, bind, shape, worker_alias)
        return f"exists ({subquery}{_value_match(node.values, bind, shape)})"
    if isinstance(node, FactNotExists):
        subquery = _fact_subquery(node.category, bind, shape, worker_alias)
        return f"not exists ({subquery}{_value_match(node.values, bind, shape)})"
    if isinstance(node, FactPrefixNotExists):
        subquery = _fact_subquery(node.category, bind, shape, worker_alias)
        if node.prefix:
            subquery += f" and f.{shape.value_column} like {bind(escape_like(node.prefix) + '%')}"
        if node.except_value is not None:
            subquery += f" and f.{shape.value_column} <> {bind(node.except_value)}"
        return f"not exists ({subquery})"
    if isinstance(node, AttributeIn):
        column = f"{worker_alias}.{node.column}::text"
        if len(node.values) == 1:
            return f"{column} = {bind(node.values[0])}"
        return f"{column} = any({bind(list(node.values))}::text[])"
    raise TypeError(f"unknown predicate node: {node!r}")


def _explain_values(values: tuple[str, ...]) -> str:
    if len(values) == 1:
        return f"= {values[0]!r}"
    return "IN (" + ", ".join(repr(value) for value in values) + ")"


def _explain_node(node: PredicateNode) -> str:
    if isinstance(node, FactExists):
        return f"HAS fact[{node.category}] value {_explain_values(node.values)}"
    if isinstance(node, FactNotExists):
        return f"NO fact[{node.category}] value {_explain_values(node.values)}"
    if isinstance(node, FactPrefixNotExists):
        text = f"NO fact[{node.category}] value LIKE {node.prefix + WILDCARD!r}"
        if node.except_value is not None:
            text += f" EXCEPT {node.except_value!r}"
        return text
    if isinstance(node, AttributeIn):
        return f"worker.{node.attribute} {_explain_values(node.values)}"
    raise TypeError(f"unknown predicate node: {node!r}")
