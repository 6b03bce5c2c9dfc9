from __future__ import annotations

import asyncio
from typing import Any

import pytest

from dispatch_elig.eligibility.errors import ConditionCompileError, EngineNotInitializedError
from dispatch_elig.eligibility.models import (
    ConditionType,
    EligibilityCondition,
    EligibilityFact,
    EligibilityQueryContext,
)
from dispatch_elig.eligibility.plugin import EligibilityPlugin
from dispatch_elig.eligibility.query import FactExists, FactPrefixNotExists, escape_like, render_explain, render_sql
from dispatch_elig.services.repository import RepositoryNotFoundError
from tests.fakes import ALL_PLUGINS_CONFIG, EMPLOYER_A, EMPLOYER_B, STATUS_ACTIVE, TODAY, evaluate_eligible


class ScriptedPlugin(EligibilityPlugin):
    id = "scripted"
    name = "Scripted"
    description = "Returns whatever the test hands it"
    component_id = "dispatch.scripted"
    category = "scripted"

    def __init__(self, *args: Any, result: Any = None, error: Exception | None = None) -> None:
        super().__init__(*args)
        self.result = result
        self.error = error
        self.calls = 0

    def get_eligibility_condition(self, context: EligibilityQueryContext, config: dict[str, Any]) -> Any:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result

    async def derive_facts(self, worker_id: str, *, conn: Any) -> list[EligibilityFact]:
        return []


def _with_scripted(repo, make_engine, **kwargs: Any):
    repo.components["dispatch.scripted"] = True
    repo.set_job_plugins("job-1", {"plugins": [*ALL_PLUGINS_CONFIG["plugins"], {"plugin_id": "scripted"}]})
    engine = make_engine(repo)
    plugin = ScriptedPlugin(repo, engine.gate, engine.clock, **kwargs)
    engine.register_plugin(plugin)
    asyncio.run(engine.initialize())
    return engine, plugin


def _compile(engine, job_id: str = "job-1", limit: int = 50):
    return asyncio.run(engine.compile_for_job(job_id, limit=limit))


def test_compile_binds_every_comparand(repo, make_engine) -> None:
    engine = make_engine(repo)
    asyncio.run(engine.initialize())

    compiled = _compile(engine)

    assert compiled.params == [
        "ban",
        "dispatch:%",
        "dnc",
        f"employer:{EMPLOYER_A}",
        "hfe",
        "employer:%",
        f"employer:{EMPLOYER_A}",
        STATUS_ACTIVE,
        50,
    ]
    assert "employer-a" not in compiled.sql
    assert "from workers w" in compiled.sql
    assert "count(*) over () as total" in compiled.sql
    assert "f.value like $2" in compiled.sql
    assert "f.value <> $7" in compiled.sql
    assert "w.denorm_ws_id::text = $8" in compiled.sql
    assert compiled.sql.endswith("limit $9")
    assert [applied.plugin_id for applied in compiled.applied_conditions] == [
        "dispatch_ban",
        "dispatch_dnc",
        "dispatch_hfe",
        "dispatch_work_status",
    ]


def test_compile_explain_is_human_readable(repo, make_engine) -> None:
    engine = make_engine(repo)
    asyncio.run(engine.initialize())

    assert _compile(engine).explain == (
        "NO fact[ban] value LIKE 'dispatch:*'"
        " AND NO fact[dnc] value = 'employer:employer-a'"
        " AND NO fact[hfe] value LIKE 'employer:*' EXCEPT 'employer:employer-a'"
        " AND worker.work_status = 'ws-active'"
    )


def test_job_without_plugins_matches_all_workers(repo, make_engine) -> None:
    repo.set_job_plugins("job-1", {"plugins": []})
    engine = make_engine(repo)
    asyncio.run(engine.initialize())

    compiled = _compile(engine, limit=10)

    assert "where true" in compiled.sql
    assert compiled.params == [10]
    assert compiled.applied_conditions == []
    assert compiled.explain == "ALL workers"


def test_only_plugins_named_by_job_type_are_asked(repo, make_engine) -> None:
    engine, plugin = _with_scripted(repo, make_engine)
    repo.set_job_plugins("job-1", {"plugins": [{"pluginId": "dispatch_ban", "enabled": True}]})

    compiled = _compile(engine)

    assert plugin.calls == 0
    assert [applied.plugin_id for applied in compiled.applied_conditions] == ["dispatch_ban"]


def test_disabled_plugin_entry_is_not_applied(repo, make_engine) -> None:
    repo.set_job_plugins(
        "job-1",
        {"plugins": [{"plugin_id": "dispatch_ban", "enabled": False}, {"plugin_id": "dispatch_dnc"}]},
    )
    engine = make_engine(repo)
    asyncio.run(engine.initialize())

    assert [applied.plugin_id for applied in _compile(engine).applied_conditions] == ["dispatch_dnc"]


def test_compile_fails_closed_when_plugin_raises(repo, make_engine) -> None:
    engine, _ = _with_scripted(repo, make_engine, error=RuntimeError("boom"))

    with pytest.raises(ConditionCompileError, match="scripted") as exc_info:
        _compile(engine)
    assert exc_info.value.plugin_id == "scripted"


def test_compile_rejects_condition_outside_plugin_category(repo, make_engine) -> None:
    stray = EligibilityCondition(category="ban", type=ConditionType.NOT_EXISTS, value="dispatch:1")
    engine, _ = _with_scripted(repo, make_engine, result=stray)

    with pytest.raises(ConditionCompileError, match="not owned"):
        _compile(engine)


def test_compile_rejects_non_condition_and_malformed_patterns(repo, make_engine) -> None:
    engine, plugin = _with_scripted(repo, make_engine, result={"category": "scripted"})
    with pytest.raises(ConditionCompileError, match="not a condition"):
        _compile(engine)

    plugin.result = EligibilityCondition(category="scripted", type=ConditionType.NOT_EXISTS_CATEGORY, value="plain")
    with pytest.raises(ConditionCompileError, match="must contain"):
        _compile(engine)


def test_compile_requires_initialized_engine_and_known_job(repo, make_engine) -> None:
    engine = make_engine(repo)
    with pytest.raises(EngineNotInitializedError):
        _compile(engine)

    asyncio.run(engine.initialize())
    with pytest.raises(RepositoryNotFoundError):
        _compile(engine, job_id="missing")


def test_conditions_combine_with_and(repo, make_engine) -> None:
    repo.facts.update(
        {
            ("w-1", "ban", "dispatch:ban-1"),
            ("w-2", "hfe", f"employer:{EMPLOYER_B}"),
        }
    )
    engine = make_engine(repo)
    asyncio.run(engine.initialize())

    assert evaluate_eligible(repo, _compile(engine).applied_conditions) == []

    repo.facts.discard(("w-2", "hfe", f"employer:{EMPLOYER_B}"))
    repo.facts.add(("w-2", "hfe", f"employer:{EMPLOYER_A}"))
    assert evaluate_eligible(repo, _compile(engine).applied_conditions) == ["w-2"]


def test_removing_status_rule_or_component_includes_suspended_worker(repo, make_engine) -> None:
    engine = make_engine(repo)
    asyncio.run(engine.initialize())
    assert "w-3" not in evaluate_eligible(repo, _compile(engine).applied_conditions)

    repo.set_job_plugins("job-1", {"plugins": [{"plugin_id": "dispatch_ban"}, {"plugin_id": "dispatch_work_status"}]})
    assert "w-3" in evaluate_eligible(repo, _compile(engine).applied_conditions)

    repo.set_job_plugins("job-1", ALL_PLUGINS_CONFIG)
    repo.components["dispatch.work_status"] = False
    asyncio.run(engine.gate.refresh())
    assert "w-3" in evaluate_eligible(repo, _compile(engine).applied_conditions)


def test_list_executes_the_previewed_statement(repo, make_engine) -> None:
    engine = make_engine(repo)

    async def scenario():
        await engine.initialize()
        compiled = await engine.compile_for_job("job-1", limit=2)
        result = await engine.eligible_workers("job-1", limit=2)
        return compiled, result

    compiled, result = asyncio.run(scenario())

    assert repo.executed == [(compiled.sql, compiled.params)]
    assert [worker["id"] for worker in result.workers] == ["w-1", "w-2"]
    assert result.total == 2
    assert result.applied_conditions == compiled.applied_conditions


def test_like_pattern_escapes_wildcards() -> None:
    params: list[Any] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    sql = render_sql([FactPrefixNotExists(category="ban", prefix="50%_off\\")], bind)

    assert escape_like("a_b%c") == "a\\_b\\%c"
    assert params == ["ban", "50\\%\\_off\\\\%"]
    assert sql.startswith("not exists (select 1 from worker_dispatch_elig_denorm f where f.worker_id = w.id")


def test_multi_value_conditions_bind_one_array() -> None:
    params: list[Any] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    nodes = [FactExists(category="skill", values=("forklift", "rigging"))]
    sql = render_sql(nodes, bind)

    assert "f.value = any($2::text[])" in sql
    assert params == ["skill", ["forklift", "rigging"]]
    assert render_explain(nodes) == "HAS fact[skill] value IN ('forklift', 'rigging')"


def test_query_context_uses_engine_clock(repo, make_engine) -> None:
    engine = make_engine(repo)
    seen: list[EligibilityQueryContext] = []
    hfe = engine.registry.get_plugin("dispatch_hfe")
    original = hfe.get_eligibility_condition

    def spy(context: EligibilityQueryContext, config: dict[str, Any]):
        seen.append(context)
        return original(context, config)

    hfe.get_eligibility_condition = spy
    asyncio.run(engine.initialize())
    _compile(engine)

    assert seen == [
        EligibilityQueryContext(job_id="job-1", employer_id=EMPLOYER_A, job_type_id="type-1", today=TODAY)
    ]
