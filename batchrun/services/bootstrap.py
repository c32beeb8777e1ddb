from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from batchrun.clients.http import HttpFetchClient
from batchrun.config import BatchSettings
from batchrun.domain.contracts import PerformOperation, ResultSink, StateStore
from batchrun.domain.lifecycle import lifetime_attempt_limit
from batchrun.repositories.factory import build_state_store
from batchrun.repositories.results import FileResultSink
from batchrun.workers.orchestrator import Orchestrator


@dataclass
class RuntimeContainer:
    settings: BatchSettings
    store: StateStore
    sink: ResultSink
    perform: PerformOperation
    orchestrator: Orchestrator
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None


def build_runtime_container(
    settings: BatchSettings,
    *,
    run_id: str,
    perform: PerformOperation | None = None,
) -> RuntimeContainer:
    store = build_state_store(path=settings.state_path)
    sink = FileResultSink(output_dir=Path(settings.output_dir))

    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    if perform is None:
        client = HttpFetchClient(timeout_ms=settings.fetch_timeout_ms)
        perform = client
        on_startup = client.startup
        on_shutdown = client.shutdown

    orchestrator = Orchestrator(
        store=store,
        perform=perform,
        sink=sink,
        concurrency=settings.concurrency,
        max_attempts=settings.max_attempts,
        backoff=settings.backoff_policy(),
        retry_policy=lifetime_attempt_limit(settings.permanent_after_attempts),
        retry_gating=settings.retry_gating,
        run_id=run_id,
    )
    return RuntimeContainer(
        settings=settings,
        store=store,
        sink=sink,
        perform=perform,
        orchestrator=orchestrator,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
