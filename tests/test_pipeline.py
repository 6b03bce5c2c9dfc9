from __future__ import annotations

import asyncio
from datetime import timedelta

from dispatch_elig.eligibility.events import DomainEvent, EventType
from tests.fakes import EMPLOYER_A, EMPLOYER_B, TODAY, evaluate_eligible


def _ban(ban_id: str, worker_id: str, *, start=TODAY, end=None, ban_type: str = "dispatch") -> dict:
    return {"id": ban_id, "worker_id": worker_id, "type": ban_type, "start_date": start, "end_date": end}


def test_recompute_is_idempotent(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.bans.extend([_ban("ban-1", "w-1"), _ban("ban-2", "w-1", ban_type="benefit")])
    ban_plugin = engine.registry.get_plugin("dispatch_ban")

    async def scenario():
        await engine.initialize()
        first = await ban_plugin.recompute_worker("w-1")
        first_facts = set(repo.facts)
        second = await ban_plugin.recompute_worker("w-1")
        return first, first_facts, second

    first, first_facts, second = asyncio.run(scenario())

    assert first_facts == {("w-1", "ban", "dispatch:ban-1")}
    assert repo.facts == first_facts
    assert (first.created, first.total) == (1, 1)
    assert (second.removed, second.created, second.total) == (1, 0, 1)


def test_recompute_converges_regardless_of_event_order(repo, make_engine) -> None:
    def run(order: list[EventType]) -> set:
        local_repo = type(repo)()
        local_repo.dnc.append({"id": "dnc-1", "worker_id": "w-2", "employer_id": EMPLOYER_A, "type": "employer"})
        local_repo.dnc.append({"id": "dnc-2", "worker_id": "w-2", "employer_id": EMPLOYER_B, "type": "worker"})
        engine = make_engine(local_repo)

        async def scenario() -> None:
            await engine.initialize()
            for event_type in order:
                await engine.publish(DomainEvent(event_type=event_type, payload={"worker_id": "w-2"}))

        asyncio.run(scenario())
        return set(local_repo.facts)

    forward = run([EventType.DISPATCH_DNC_SAVED, EventType.DISPATCH_DNC_DELETED])
    backward = run([EventType.DISPATCH_DNC_DELETED, EventType.DISPATCH_DNC_SAVED])

    assert forward == backward == {
        ("w-2", "dnc", f"employer:{EMPLOYER_A}"),
        ("w-2", "dnc", f"employer:{EMPLOYER_B}"),
    }


def test_concurrent_recomputes_for_same_pair_serialize(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.bans.append(_ban("ban-1", "w-1"))
    ban_plugin = engine.registry.get_plugin("dispatch_ban")

    async def scenario():
        await engine.initialize()
        return await asyncio.gather(*(engine.pipeline.recompute(ban_plugin, "w-1") for _ in range(5)))

    results = asyncio.run(scenario())

    assert all(result is not None for result in results)
    assert repo.facts == {("w-1", "ban", "dispatch:ban-1")}
    assert sum(result.created for result in results) == 1


def test_recompute_never_touches_other_categories(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.facts.update({("w-1", "dnc", "employer:x"), ("w-1", "hfe", "employer:y"), ("w-2", "ban", "dispatch:other")})
    repo.bans.append(_ban("ban-1", "w-1"))

    async def scenario() -> None:
        await engine.initialize()
        await engine.registry.get_plugin("dispatch_ban").recompute_worker("w-1")

    asyncio.run(scenario())

    assert repo.facts == {
        ("w-1", "dnc", "employer:x"),
        ("w-1", "hfe", "employer:y"),
        ("w-2", "ban", "dispatch:other"),
        ("w-1", "ban", "dispatch:ban-1"),
    }


def test_disabled_component_clears_facts_on_recompute(repo, make_engine) -> None:
    repo.components["dispatch.ban"] = False
    repo.bans.append(_ban("ban-1", "w-1"))
    engine = make_engine(repo)

    async def scenario():
        await engine.initialize()
        repo.facts.update({("w-1", "ban", "dispatch:ban-1"), ("w-1", "ban", "dispatch:ban-2")})
        return await engine.registry.get_plugin("dispatch_ban").recompute_worker("w-1")

    result = asyncio.run(scenario())

    assert result.skipped == "component_disabled"
    assert result.removed == 2
    assert repo.facts_for("w-1", "ban") == set()


def test_recompute_before_gate_initialization_is_skipped(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.facts.add(("w-1", "ban", "dispatch:ban-1"))

    result = asyncio.run(engine.registry.get_plugin("dispatch_ban").recompute_worker("w-1"))

    assert result.skipped == "gate_not_initialized"
    assert repo.facts == {("w-1", "ban", "dispatch:ban-1")}


def test_failing_plugin_keeps_last_known_good_and_spares_siblings(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.facts.add(("w-1", "ban", "dispatch:ban-old"))
    repo.dnc.append({"id": "dnc-1", "worker_id": "w-1", "employer_id": EMPLOYER_A, "type": "employer"})

    async def scenario():
        await engine.initialize()
        repo.fail_reads_for.add("w-1")
        failed = await engine.pipeline.recompute(engine.registry.get_plugin("dispatch_ban"), "w-1")
        repo.fail_reads_for.clear()
        results = await engine.recompute_worker("w-1", ["dispatch_dnc", "dispatch_work_status"])
        return failed, results

    failed, results = asyncio.run(scenario())

    assert failed is None
    assert repo.facts_for("w-1", "ban") == {("ban", "dispatch:ban-old")}
    assert [result.plugin_id for result in results] == ["dispatch_dnc", "dispatch_work_status"]
    assert repo.facts_for("w-1", "dnc") == {("dnc", f"employer:{EMPLOYER_A}")}


def test_recompute_worker_all_isolates_failures(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.fail_reads_for.add("w-3")

    async def scenario():
        await engine.initialize()
        return await engine.recompute_worker("w-3")

    results = asyncio.run(scenario())

    assert results == [None] * 5


def test_hfe_recompute_keeps_only_active_holds(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.holds.extend(
        [
            {"id": "h-1", "worker_id": "w-1", "employer_id": EMPLOYER_A, "hold_until": TODAY},
            {"id": "h-2", "worker_id": "w-1", "employer_id": EMPLOYER_B, "hold_until": TODAY - timedelta(days=1)},
        ]
    )

    async def scenario() -> None:
        await engine.initialize()
        await engine.registry.get_plugin("dispatch_hfe").recompute_worker("w-1")

    asyncio.run(scenario())

    assert repo.facts_for("w-1") == {("hfe", f"employer:{EMPLOYER_A}")}


def test_backfill_is_idempotent(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.bans.extend([_ban("ban-1", "w-1"), _ban("ban-2", "w-2", end=TODAY + timedelta(days=3))])
    repo.dnc.append({"id": "dnc-1", "worker_id": "w-3", "employer_id": EMPLOYER_B, "type": "worker"})

    async def scenario():
        await engine.initialize()
        first = await engine.backfill()
        snapshot = set(repo.facts)
        second = await engine.backfill()
        return first, snapshot, second

    first, snapshot, second = asyncio.run(scenario())

    assert first.entries_created == 6
    assert first.plugins["dispatch_ban"] == {"workers_processed": 2, "entries_created": 2, "failures": 0}
    assert second.entries_created == 0
    assert second.workers_processed == first.workers_processed
    assert repo.facts == snapshot


def test_backfill_reconciles_expired_records(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.facts.add(("w-1", "ban", "dispatch:ban-1"))
    repo.bans.append(_ban("ban-1", "w-1", start=TODAY - timedelta(days=5), end=TODAY - timedelta(days=1)))

    async def scenario():
        await engine.initialize()
        return await engine.backfill(["dispatch_ban"])

    summary = asyncio.run(scenario())

    assert summary.workers_processed == 1
    assert repo.facts_for("w-1", "ban") == set()


def test_backfill_skips_disabled_components_and_uninitialized_gate(repo, make_engine) -> None:
    repo.components["dispatch.hfe"] = False
    engine = make_engine(repo)

    uninitialized = asyncio.run(engine.pipeline.backfill(engine.registry.get_all_plugins()))
    assert uninitialized.workers_processed == 0
    assert len(uninitialized.skipped_plugins) == 5

    async def scenario():
        await engine.initialize()
        return await engine.backfill()

    summary = asyncio.run(scenario())
    assert summary.skipped_plugins == ["dispatch_hfe"]
    assert "dispatch_hfe" not in summary.plugins


def test_component_toggle_purges_and_restores_category(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.bans.append(_ban("ban-1", "w-1"))

    async def scenario():
        await engine.initialize()
        await engine.backfill(["dispatch_ban"])
        after_backfill = repo.facts_for("w-1", "ban")

        repo.components["dispatch.ban"] = False
        await engine.publish(DomainEvent(event_type=EventType.COMPONENT_TOGGLED, payload={"component_id": "dispatch.ban"}))
        after_disable = repo.facts_for("w-1", "ban")
        active_after_disable = [plugin.id for plugin in engine.registry.get_active_plugins()]

        repo.components["dispatch.ban"] = True
        await engine.publish(DomainEvent(event_type=EventType.COMPONENT_TOGGLED, payload={"component_id": "dispatch.ban"}))
        return after_backfill, after_disable, active_after_disable

    after_backfill, after_disable, active_after_disable = asyncio.run(scenario())

    assert after_backfill == {("ban", "dispatch:ban-1")}
    assert after_disable == set()
    assert "dispatch_ban" not in active_after_disable
    assert repo.facts_for("w-1", "ban") == {("ban", "dispatch:ban-1")}


def test_ban_lifecycle_moves_worker_out_of_and_back_into_results(repo, make_engine) -> None:
    repo.set_job_plugins("job-1", {"plugins": [{"plugin_id": "dispatch_ban"}]})
    engine = make_engine(repo)
    ban = _ban("ban-7", "w-2")
    ban_plugin = engine.registry.get_plugin("dispatch_ban")

    async def scenario() -> list[list[str]]:
        await engine.initialize()
        eligible = []
        repo.bans.append(ban)
        await ban_plugin.recompute_worker("w-2")
        eligible.append(evaluate_eligible(repo, (await engine.compile_for_job("job-1", limit=10)).applied_conditions))

        ban["end_date"] = TODAY - timedelta(days=1)
        await ban_plugin.recompute_worker("w-2")
        eligible.append(evaluate_eligible(repo, (await engine.compile_for_job("job-1", limit=10)).applied_conditions))
        return eligible

    banned, lifted = asyncio.run(scenario())

    assert banned == ["w-1", "w-3"]
    assert lifted == ["w-1", "w-2", "w-3"]
    assert repo.facts_for("w-2") == set()


def test_hold_without_start_date_reserves_worker_until_hold_until(repo, make_engine) -> None:
    repo.set_job_plugins("job-1", {"plugins": [{"plugin_id": "dispatch_hfe"}]})
    repo.holds.append({"id": "h-1", "worker_id": "w-1", "employer_id": EMPLOYER_B, "hold_until": TODAY + timedelta(days=5)})
    engine = make_engine(repo)

    async def scenario():
        await engine.initialize()
        await engine.pipeline.recompute(engine.registry.get_plugin("dispatch_hfe"), "w-1")
        return await engine.eligible_workers("job-1", limit=10)

    result = asyncio.run(scenario())

    assert repo.facts_for("w-1", "hfe") == {("hfe", f"employer:{EMPLOYER_B}")}
    assert [worker["id"] for worker in result.workers] == ["w-3", "w-2"]


def test_initialize_purges_categories_of_disabled_components(repo, make_engine) -> None:
    repo.components["dispatch.dnc"] = False
    repo.facts.update({("w-1", "dnc", f"employer:{EMPLOYER_A}"), ("w-1", "ban", "dispatch:ban-1")})
    engine = make_engine(repo)

    asyncio.run(engine.initialize())

    assert repo.facts == {("w-1", "ban", "dispatch:ban-1")}


def test_backfill_purges_disabled_component_category(repo, make_engine) -> None:
    engine = make_engine(repo)
    repo.bans.append(_ban("ban-1", "w-1"))

    async def scenario():
        await engine.initialize()
        await engine.backfill(["dispatch_ban"])
        before = repo.facts_for("w-1", "ban")
        repo.components["dispatch.ban"] = False
        await engine.gate.refresh()
        summary = await engine.backfill(["dispatch_ban"])
        return before, summary

    before, summary = asyncio.run(scenario())

    assert before == {("ban", "dispatch:ban-1")}
    assert summary.skipped_plugins == ["dispatch_ban"]
    assert repo.facts_for("w-1", "ban") == set()


def test_unavailable_worker_is_excluded_until_available_again(repo, make_engine) -> None:
    repo.set_job_plugins("job-1", {"plugins": [{"plugin_id": "dispatch_status"}]})
    engine = make_engine(repo)
    saved = DomainEvent(event_type=EventType.WORKER_DISPATCH_STATUS_SAVED, payload={"worker_id": "w-2"})

    async def scenario():
        await engine.initialize()
        repo.dispatch_statuses["w-2"] = "not_available"
        await engine.publish(saved)
        unavailable = (await engine.eligible_workers("job-1", limit=10)).workers
        facts = repo.facts_for("w-2")

        repo.dispatch_statuses["w-2"] = "available"
        await engine.publish(saved)
        available = (await engine.eligible_workers("job-1", limit=10)).workers
        return unavailable, facts, available

    unavailable, facts, available = asyncio.run(scenario())

    assert [worker["id"] for worker in unavailable] == ["w-1", "w-3"]
    assert facts == {("dispatch_status", "not_available")}
    assert [worker["id"] for worker in available] == ["w-1", "w-3", "w-2"]
    assert repo.facts_for("w-2") == set()


def test_dispatch_status_backfill_covers_only_unavailable_workers(repo, make_engine) -> None:
    repo.dispatch_statuses.update({"w-1": "available", "w-3": "not_available"})
    engine = make_engine(repo)

    async def scenario():
        await engine.initialize()
        return await engine.backfill(["dispatch_status"])

    summary = asyncio.run(scenario())

    assert summary.plugins["dispatch_status"] == {"workers_processed": 1, "entries_created": 1, "failures": 0}
    assert repo.facts == {("w-3", "dispatch_status", "not_available")}
