from pathlib import Path

import pytest

from batchrun.clients.stub import ScriptedPerform
from batchrun.config import BatchSettings
from batchrun.domain.contracts import ResultSink, StateStore
from batchrun.repositories.json_file import JsonFileStateStore
from batchrun.repositories.results import FileResultSink
from batchrun.repositories.stub import InMemoryResultSink, InMemoryStateStore
from batchrun.services.bootstrap import build_runtime_container
from batchrun.workers.orchestrator import Orchestrator


@pytest.mark.unit
@pytest.mark.parametrize("store", [InMemoryStateStore(), JsonFileStateStore(path=Path("unused.json"))])
def test_state_stores_satisfy_contract(store: object) -> None:
    assert isinstance(store, StateStore)


@pytest.mark.unit
@pytest.mark.parametrize("sink", [InMemoryResultSink(), FileResultSink(output_dir=Path("unused"))])
def test_result_sinks_satisfy_contract(sink: object) -> None:
    assert isinstance(sink, ResultSink)


@pytest.mark.unit
def test_runtime_container_wires_orchestrator_through_contracts(tmp_path: Path) -> None:
    settings = BatchSettings(
        state_path=str(tmp_path / "state.json"),
        output_dir=str(tmp_path / "out"),
        max_attempts=4,
        concurrency=5,
        backoff_strategy="exponential",
        backoff_base_ms=100,
        permanent_after_attempts=2,
        retry_gating=False,
    )
    perform = ScriptedPerform()

    container = build_runtime_container(settings, run_id="run-wiring", perform=perform)

    orchestrator = container.orchestrator
    assert isinstance(orchestrator, Orchestrator)
    assert isinstance(container.store, JsonFileStateStore)
    assert container.store.path == tmp_path / "state.json"
    assert isinstance(container.sink, FileResultSink)
    assert orchestrator.perform is perform
    assert orchestrator.max_attempts == 4
    assert orchestrator.concurrency == 5
    assert orchestrator.backoff.delay_ms(3) == 400
    assert orchestrator.retry_gating is False
    assert orchestrator.run_id == "run-wiring"
    assert container.on_startup is None
