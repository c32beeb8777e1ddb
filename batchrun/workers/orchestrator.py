from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import uuid

from batchrun.domain.backoff import BackoffPolicy
from batchrun.domain.contracts import PerformOperation, ResultSink, StateStore
from batchrun.domain.errors import PersistenceFailureError
from batchrun.domain.lifecycle import RetryPolicy, is_terminal, lifetime_attempt_limit, reclaim_stale
from batchrun.domain.models import ItemState, ItemStatus, RunSummary
from batchrun.repositories.items import validate_items
from batchrun.workers.retrying import RetryingOperation, Waiter, utcnow, wait_or_stop
from batchrun.workers.scheduler import Scheduler

logger = logging.getLogger("runtime")

DEFAULT_PERMANENT_AFTER_ATTEMPTS = 9


@dataclass
class Orchestrator:
    """Computes the pending set and drives one Scheduler pass to completion.

    The final state flush runs on every exit path. ``stop`` may be called at
    any time, any number of times.
    """

    store: StateStore
    perform: PerformOperation
    sink: ResultSink
    concurrency: int = 3
    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    retry_policy: RetryPolicy = field(
        default_factory=lambda: lifetime_attempt_limit(DEFAULT_PERMANENT_AFTER_ATTEMPTS)
    )
    retry_gating: bool = True
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    clock: Callable[[], datetime] = field(default=utcnow)
    wait: Waiter = wait_or_stop
    _stop_requested: bool = field(default=False, init=False, repr=False)
    _scheduler: Scheduler | None = field(default=None, init=False, repr=False)

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def stop(self) -> None:
        if self._stop_requested:
            return
        self._stop_requested = True
        logger.info("shutdown requested", extra={"run_id": self.run_id})
        if self._scheduler is not None:
            self._scheduler.stop()

    def is_eligible(self, state: ItemState | None, now: datetime) -> bool:
        if state is None:
            return True
        if is_terminal(state.status):
            return False
        if state.status != ItemStatus.FAILED_RETRYABLE or not self.retry_gating:
            return True
        last_attempt = state.last_attempt
        if last_attempt is None:
            return True
        ready_at = last_attempt.ended_at + timedelta(milliseconds=self.backoff.delay_ms(state.attempt_count))
        return now >= ready_at

    def select_pending(
        self,
        keys: Sequence[str],
        states: Mapping[str, ItemState],
        now: datetime,
    ) -> tuple[list[str], int]:
        pending: list[str] = []
        deferred = 0
        for key in keys:
            state = states.get(key)
            if self.is_eligible(state, now):
                pending.append(key)
            elif state is not None and state.status == ItemStatus.FAILED_RETRYABLE:
                deferred += 1
        return pending, deferred

    async def run(self, all_keys: Sequence[str]) -> RunSummary:
        keys = validate_items(all_keys)
        states = await self.store.load()

        reclaimed = [key for key, state in states.items() if reclaim_stale(state)]
        if reclaimed:
            logger.warning(
                "reclaimed items left in progress by a previous run",
                extra={"run_id": self.run_id, "status": f"{len(reclaimed)} items"},
            )

        pending, deferred = self.select_pending(keys, states, self.clock())
        logger.info(
            "batch run started",
            extra={
                "run_id": self.run_id,
                "status": f"{len(pending)} pending, {deferred} deferred, {len(keys)} total",
            },
        )

        if not pending:
            await self.store.save_all(states)
            logger.info("no pending items", extra={"run_id": self.run_id})
            return RunSummary(deferred=deferred, interrupted=self._stop_requested)

        scheduler = Scheduler(
            states=states,
            store=self.store,
            perform=self.perform,
            sink=self.sink,
            retrying=RetryingOperation(
                max_attempts=self.max_attempts,
                backoff=self.backoff,
                wait=self.wait,
                clock=self.clock,
            ),
            retry_policy=self.retry_policy,
            concurrency=self.concurrency,
            run_id=self.run_id,
            clock=self.clock,
        )
        scheduler.admit(pending)
        self._scheduler = scheduler
        if self._stop_requested:
            scheduler.stop()

        try:
            stats = await scheduler.drain()
        except BaseException:
            await self._flush_best_effort(states)
            raise
        finally:
            self._scheduler = None

        await self.store.save_all(states)

        summary = RunSummary(
            completed=stats.completed,
            failed=stats.failed,
            permanently_failed=stats.permanently_failed,
            pending=scheduler.queued,
            deferred=deferred,
            interrupted=self._stop_requested,
        )
        logger.info(
            "batch run finished",
            extra={
                "run_id": self.run_id,
                "status": (
                    f"{summary.completed} completed, {summary.failed} failed, "
                    f"{summary.permanently_failed} permanently failed, {summary.pending} not started"
                ),
            },
        )
        return summary

    async def _flush_best_effort(self, states: Mapping[str, ItemState]) -> None:
        try:
            await self.store.save_all(states)
        except PersistenceFailureError:
            logger.exception("final state flush failed", extra={"run_id": self.run_id})
