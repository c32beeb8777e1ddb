from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from batchrun.clients.stub import ScriptedPerform, always_fail
from batchrun.domain.backoff import linear_backoff
from batchrun.domain.errors import InvalidInputFormatError, PersistenceFailureError
from batchrun.domain.lifecycle import check_invariants, lifetime_attempt_limit
from batchrun.domain.models import AttemptOutcome, AttemptRecord, ItemState, ItemStatus, OperationResult
from batchrun.repositories.json_file import JsonFileStateStore
from batchrun.repositories.stub import InMemoryResultSink, InMemoryStateStore
from batchrun.workers.orchestrator import Orchestrator

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


async def _no_wait(delay_seconds: float, stop_event: asyncio.Event | None) -> bool:
    del delay_seconds
    return stop_event is not None and stop_event.is_set()


def _orchestrator(
    store,
    perform: ScriptedPerform,
    *,
    sink: InMemoryResultSink | None = None,
    max_attempts: int = 3,
    permanent_after: int = 9,
    retry_gating: bool = False,
    clock=None,
) -> Orchestrator:
    return Orchestrator(
        store=store,
        perform=perform,
        sink=sink or InMemoryResultSink(),
        concurrency=2,
        max_attempts=max_attempts,
        backoff=linear_backoff(base_ms=2000),
        retry_policy=lifetime_attempt_limit(permanent_after),
        retry_gating=retry_gating,
        clock=clock or (lambda: NOW),
        wait=_no_wait,
    )


def _attempt(number: int, outcome: AttemptOutcome, at: datetime = NOW) -> AttemptRecord:
    return AttemptRecord(
        attempt_number=number,
        started_at=at,
        ended_at=at,
        outcome=outcome,
        error="fetch_failed: boom" if outcome == AttemptOutcome.FAILURE else None,
    )


@pytest.mark.unit
def test_second_run_over_same_store_processes_nothing(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    keys = [f"https://example.com/{i}" for i in range(5)]
    first_perform = ScriptedPerform()
    second_perform = ScriptedPerform()

    first = asyncio.run(_orchestrator(JsonFileStateStore(path=path), first_perform).run(keys))
    second = asyncio.run(_orchestrator(JsonFileStateStore(path=path), second_perform).run(keys))

    assert first.completed == 5
    assert second.processed == 0
    assert second_perform.calls == []
    final = asyncio.run(JsonFileStateStore(path=path).load())
    assert {key for key, state in final.items() if state.status == ItemStatus.COMPLETED} == set(keys)


@pytest.mark.unit
def test_attempt_numbers_continue_across_runs(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    perform = ScriptedPerform(script={"k": [*always_fail(times=3), OperationResult.ok("done")]})

    first = asyncio.run(_orchestrator(JsonFileStateStore(path=path), perform).run(["k"]))
    second = asyncio.run(_orchestrator(JsonFileStateStore(path=path), perform).run(["k"]))

    assert first.failed == 1
    assert second.completed == 1
    state = asyncio.run(JsonFileStateStore(path=path).load())["k"]
    assert [attempt.attempt_number for attempt in state.attempts] == [1, 2, 3, 4]
    assert state.status == ItemStatus.COMPLETED
    check_invariants(state)


@pytest.mark.unit
def test_resume_processes_only_pending_and_unknown_keys() -> None:
    completed = ItemState(
        key="done",
        status=ItemStatus.COMPLETED,
        attempts=[_attempt(1, AttemptOutcome.SUCCESS)],
        result_ref="memory://done",
    )
    permanent = ItemState(
        key="dead",
        status=ItemStatus.FAILED_PERMANENT,
        attempts=[_attempt(1, AttemptOutcome.FAILURE)],
        last_error="fetch_failed: boom",
    )
    store = InMemoryStateStore(
        states={"done": completed, "dead": permanent, "todo": ItemState(key="todo")}
    )
    perform = ScriptedPerform()

    summary = asyncio.run(_orchestrator(store, perform).run(["done", "dead", "todo", "new"]))

    assert sorted(perform.calls) == ["new", "todo"]
    assert summary.completed == 2
    assert store.states["done"] == completed
    assert store.states["dead"] == permanent


@pytest.mark.unit
def test_corrupt_store_is_treated_as_fresh_run(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("<<garbage>>", encoding="utf-8")
    perform = ScriptedPerform()

    summary = asyncio.run(_orchestrator(JsonFileStateStore(path=path), perform).run(["a", "b"]))

    assert summary.completed == 2
    assert len(asyncio.run(JsonFileStateStore(path=path).load())) == 2


@pytest.mark.unit
def test_empty_pending_set_returns_zero_summary_and_flushes_state() -> None:
    store = InMemoryStateStore(
        states={
            "done": ItemState(
                key="done",
                status=ItemStatus.COMPLETED,
                attempts=[_attempt(1, AttemptOutcome.SUCCESS)],
                result_ref="memory://done",
            )
        }
    )
    perform = ScriptedPerform()

    summary = asyncio.run(_orchestrator(store, perform).run(["done"]))

    assert summary.processed == 0
    assert summary.pending == 0
    assert perform.calls == []
    assert len(store.snapshots) == 1
    assert store.states["done"].status == ItemStatus.COMPLETED
    assert asyncio.run(_orchestrator(InMemoryStateStore(), perform).run([])).processed == 0


@pytest.mark.unit
def test_retry_gating_defers_items_until_backoff_elapses() -> None:
    failed = ItemState(
        key="k",
        status=ItemStatus.FAILED_RETRYABLE,
        attempts=[_attempt(1, AttemptOutcome.FAILURE, NOW), _attempt(2, AttemptOutcome.FAILURE, NOW)],
        last_error="fetch_failed: boom",
    )
    store = InMemoryStateStore(states={"k": failed})
    perform = ScriptedPerform()

    too_early = _orchestrator(store, perform, retry_gating=True, clock=lambda: NOW + timedelta(seconds=3))
    summary = asyncio.run(too_early.run(["k"]))
    assert summary.deferred == 1
    assert perform.calls == []

    # Two attempts recorded, so the linear policy asks for 4 seconds.
    ready = _orchestrator(store, perform, retry_gating=True, clock=lambda: NOW + timedelta(seconds=4))
    summary = asyncio.run(ready.run(["k"]))
    assert summary.completed == 1
    assert store.states["k"].attempts[-1].attempt_number == 3


@pytest.mark.unit
def test_without_gating_retryable_items_are_eligible_immediately() -> None:
    failed = ItemState(
        key="k",
        status=ItemStatus.FAILED_RETRYABLE,
        attempts=[_attempt(1, AttemptOutcome.FAILURE)],
        last_error="fetch_failed: boom",
    )
    store = InMemoryStateStore(states={"k": failed})
    perform = ScriptedPerform()

    summary = asyncio.run(_orchestrator(store, perform, retry_gating=False).run(["k"]))

    assert summary.completed == 1


@pytest.mark.unit
def test_stale_in_progress_records_are_reclaimed() -> None:
    store = InMemoryStateStore(
        states={
            "fresh": ItemState(key="fresh", status=ItemStatus.IN_PROGRESS),
            "retried": ItemState(
                key="retried",
                status=ItemStatus.IN_PROGRESS,
                attempts=[_attempt(1, AttemptOutcome.FAILURE)],
            ),
        }
    )
    perform = ScriptedPerform()

    summary = asyncio.run(_orchestrator(store, perform).run(["fresh", "retried"]))

    assert summary.completed == 2
    assert [a.attempt_number for a in store.states["retried"].attempts] == [1, 2]


@pytest.mark.unit
def test_invalid_input_fails_before_any_work() -> None:
    store = InMemoryStateStore()
    perform = ScriptedPerform()

    with pytest.raises(InvalidInputFormatError):
        asyncio.run(_orchestrator(store, perform).run(["ok", 42]))  # type: ignore[list-item]
    with pytest.raises(InvalidInputFormatError):
        asyncio.run(_orchestrator(store, perform).run("not-a-list"))

    assert perform.calls == []
    assert store.snapshots == []


@pytest.mark.unit
def test_persistence_failure_propagates_after_best_effort_flush() -> None:
    store = InMemoryStateStore(fail_after_saves=1)
    perform = ScriptedPerform()

    with pytest.raises(PersistenceFailureError):
        asyncio.run(_orchestrator(store, perform).run(["a", "b"]))

    assert len(store.snapshots) == 1


@pytest.mark.unit
def test_stop_during_run_finishes_current_attempts_and_flushes() -> None:
    store = InMemoryStateStore()
    perform = ScriptedPerform(delay_seconds=0.02)
    orchestrator = _orchestrator(store, perform)

    async def _run():
        task = asyncio.create_task(orchestrator.run([f"k{i}" for i in range(10)]))
        await asyncio.sleep(0.005)
        orchestrator.stop()
        orchestrator.stop()
        return await task

    summary = asyncio.run(_run())

    assert summary.interrupted is True
    assert summary.completed == 2
    assert summary.pending == 8
    assert all(state.status != ItemStatus.IN_PROGRESS for state in store.states.values())
    assert sum(state.status == ItemStatus.COMPLETED for state in store.states.values()) == 2


@pytest.mark.unit
def test_stop_before_run_only_flushes() -> None:
    store = InMemoryStateStore()
    perform = ScriptedPerform()
    orchestrator = _orchestrator(store, perform)
    orchestrator.stop()

    summary = asyncio.run(orchestrator.run(["a", "b"]))

    assert summary.interrupted is True
    assert summary.processed == 0
    assert summary.pending == 2
    assert perform.calls == []
    assert len(store.snapshots) == 1


@pytest.mark.unit
def test_snapshot_file_is_created_when_nothing_is_pending(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.json"
    orchestrator = _orchestrator(JsonFileStateStore(path=path), ScriptedPerform())
    orchestrator.stop()

    summary = asyncio.run(orchestrator.run([]))

    assert summary.processed == 0
    assert summary.interrupted is True
    assert path.exists()
    assert asyncio.run(JsonFileStateStore(path=path).read_snapshot()) == {}
