from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
import logging

from batchrun.domain.contracts import PerformOperation, ResultSink, StateStore
from batchrun.domain.errors import (
    DomainInvariantError,
    FatalOperationError,
    PersistenceFailureError,
    RetriesExhaustedError,
)
from batchrun.domain.lifecycle import RetryPolicy, is_terminal, transition
from batchrun.domain.models import AttemptRecord, ItemState, ItemStatus, OperationResult
from batchrun.workers.retrying import RetryingOperation, utcnow

logger = logging.getLogger("scheduler")


@dataclass
class SchedulerStats:
    admitted: int = 0
    started: int = 0
    completed: int = 0
    failed: int = 0
    permanently_failed: int = 0
    max_in_flight: int = 0


@dataclass
class Scheduler:
    """Bounded worker pool driving admitted keys through RetryingOperation.

    At most ``concurrency`` items are in flight. Keys are admitted FIFO. Each
    item is owned by exactly one worker while in flight, and the whole state
    mapping is written through to ``store`` after every transition and every
    attempt.
    """

    states: dict[str, ItemState]
    store: StateStore
    perform: PerformOperation
    sink: ResultSink
    retrying: RetryingOperation
    retry_policy: RetryPolicy
    concurrency: int = 3
    run_id: str | None = None
    clock: Callable[[], datetime] = field(default=utcnow)
    stats: SchedulerStats = field(default_factory=SchedulerStats)
    in_flight: int = field(default=0, init=False)
    _queue: deque[str] = field(default_factory=deque, init=False, repr=False)
    _queued_keys: set[str] = field(default_factory=set, init=False, repr=False)
    _halt: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _fatal: Exception | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")

    @property
    def queued(self) -> int:
        return len(self._queue)

    @property
    def stopped(self) -> bool:
        return self._halt.is_set()

    def admit(self, keys: Iterable[str]) -> int:
        admitted = 0
        for key in keys:
            if key in self._queued_keys:
                continue
            state = self.states.get(key)
            if state is None:
                state = ItemState(key=key)
                self.states[key] = state
            if is_terminal(state.status) or state.status == ItemStatus.IN_PROGRESS:
                raise DomainInvariantError(f"cannot admit {key} in status {state.status}")
            self._queue.append(key)
            self._queued_keys.add(key)
            admitted += 1
        self.stats.admitted += admitted
        return admitted

    def stop(self) -> None:
        # No new attempts or items start after this; in-flight attempts finish.
        self._halt.set()

    async def drain(self) -> SchedulerStats:
        worker_count = min(self.concurrency, len(self._queue))
        workers = [asyncio.create_task(self._worker()) for _ in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        if self._fatal is not None:
            raise self._fatal
        return self.stats

    async def _worker(self) -> None:
        while self._queue and not self._halt.is_set():
            key = self._queue.popleft()
            self.in_flight += 1
            self.stats.max_in_flight = max(self.stats.max_in_flight, self.in_flight)
            try:
                await self._process(key)
            except (FatalOperationError, PersistenceFailureError) as exc:
                if self._fatal is None:
                    self._fatal = exc
                self._halt.set()
            finally:
                self.in_flight -= 1
                self._queued_keys.discard(key)

    async def _process(self, key: str) -> None:
        state = self.states[key]
        transition(state, ItemStatus.IN_PROGRESS)
        state.started_at = self.clock()
        state.ended_at = None
        self.stats.started += 1
        await self._persist()
        logger.info(
            "item started",
            extra={"item_key": key, "run_id": self.run_id, "attempt": state.attempt_count + 1},
        )

        async def _on_attempt(record: AttemptRecord, result_ref: object) -> None:
            state.attempts.append(record)
            if record.succeeded:
                state.result_ref = str(result_ref)
                state.last_error = None
                state.ended_at = record.ended_at
                transition(state, ItemStatus.COMPLETED)
            else:
                state.last_error = record.error
            await self._persist()

        try:
            await self.retrying.execute(
                key,
                self._perform_and_store,
                prior_attempts=state.attempt_count,
                on_attempt=_on_attempt,
                stop_event=self._halt,
            )
        except RetriesExhaustedError:
            status = self.retry_policy(state)
            transition(state, status)
            state.ended_at = self.clock()
            if status == ItemStatus.FAILED_PERMANENT:
                self.stats.permanently_failed += 1
            else:
                self.stats.failed += 1
            logger.warning(
                "item failed",
                extra={
                    "item_key": key,
                    "run_id": self.run_id,
                    "status": status.value,
                    "attempt": state.attempt_count,
                },
            )
            await self._persist()
            return
        except FatalOperationError:
            if state.status == ItemStatus.IN_PROGRESS:
                transition(state, ItemStatus.FAILED_RETRYABLE)
                state.ended_at = self.clock()
                self.stats.failed += 1
                await self._persist()
            raise

        self.stats.completed += 1
        logger.info(
            "item completed",
            extra={"item_key": key, "run_id": self.run_id, "status": state.status.value},
        )

    async def _perform_and_store(self, key: str) -> OperationResult:
        result = await self.perform(key)
        if not result.success:
            return result
        try:
            result_ref = await self.sink.save(key, result.content)
        except Exception as exc:
            return OperationResult.failed(f"{type(exc).__name__}: {exc}", error_code="result_sink_failed")
        return OperationResult.ok(result_ref, detail=result.detail)

    async def _persist(self) -> None:
        await self.store.save_all(self.states)
