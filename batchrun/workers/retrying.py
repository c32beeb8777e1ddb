from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
from typing import Any

from batchrun.domain.backoff import BackoffPolicy
from batchrun.domain.contracts import PerformOperation
from batchrun.domain.error_taxonomy import classify_error, format_error, resolve_error_code
from batchrun.domain.errors import FatalOperationError, RetriesExhaustedError
from batchrun.domain.models import AttemptOutcome, AttemptRecord, OperationResult, RetryOutcome

AttemptCallback = Callable[[AttemptRecord, Any], Awaitable[None]]
# Returns True when the wait was cut short by the stop event.
Waiter = Callable[[float, asyncio.Event | None], Awaitable[bool]]

logger = logging.getLogger("scheduler")


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


async def wait_or_stop(delay_seconds: float, stop_event: asyncio.Event | None) -> bool:
    if stop_event is None:
        await asyncio.sleep(delay_seconds)
        return False
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay_seconds)
        return True
    except TimeoutError:
        return False


@dataclass
class RetryingOperation:
    """Runs one opaque operation with bounded retries and backoff.

    Attempt numbers continue from ``prior_attempts`` so a resumed item never
    restarts its counter. Every attempt is reported to ``on_attempt`` before
    the next one begins; no wait happens after the final attempt.
    """

    max_attempts: int
    backoff: BackoffPolicy
    wait: Waiter = wait_or_stop
    clock: Callable[[], datetime] = field(default=utcnow)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    async def execute(
        self,
        key: str,
        perform: PerformOperation,
        *,
        prior_attempts: int = 0,
        on_attempt: AttemptCallback | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> RetryOutcome:
        attempt_log: list[AttemptRecord] = []
        last_error = ""

        for offset in range(self.max_attempts):
            attempt_number = prior_attempts + offset + 1
            started_at = self.clock()
            result = await _invoke(perform, key)
            ended_at = self.clock()

            if result.success:
                record = AttemptRecord(
                    attempt_number=attempt_number,
                    started_at=started_at,
                    ended_at=ended_at,
                    outcome=AttemptOutcome.SUCCESS,
                )
                attempt_log.append(record)
                if on_attempt is not None:
                    await on_attempt(record, result.content)
                return RetryOutcome(key=key, content=result.content, attempt_log=attempt_log)

            error_code = resolve_error_code(result.error_code)
            classification = result.retry_classification or classify_error(error_code)
            last_error = format_error(error_code, result.detail)
            record = AttemptRecord(
                attempt_number=attempt_number,
                started_at=started_at,
                ended_at=ended_at,
                outcome=AttemptOutcome.FAILURE,
                error=last_error,
            )
            attempt_log.append(record)
            if on_attempt is not None:
                await on_attempt(record, None)

            if classification == "fatal":
                raise FatalOperationError(last_error, key=key, error_code=error_code)

            logger.warning(
                "attempt failed",
                extra={"item_key": key, "attempt": attempt_number, "error_code": error_code},
            )

            if offset + 1 >= self.max_attempts:
                break

            stopped = await self.wait(self.backoff.delay_seconds(attempt_number), stop_event)
            if stopped:
                raise RetriesExhaustedError(
                    key=key,
                    attempt_log=attempt_log,
                    last_error=last_error,
                    interrupted=True,
                )

        raise RetriesExhaustedError(key=key, attempt_log=attempt_log, last_error=last_error)


async def _invoke(perform: PerformOperation, key: str) -> OperationResult:
    try:
        return await perform(key)
    except FatalOperationError as exc:
        return OperationResult.failed(
            str(exc),
            error_code="resource_unavailable",
            retry_classification="fatal",
        )
    except Exception as exc:
        logger.warning("perform raised", extra={"item_key": key}, exc_info=True)
        return OperationResult.failed(f"{type(exc).__name__}: {exc}", error_code="internal_error")
