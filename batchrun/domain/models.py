from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from batchrun.domain.error_taxonomy import ErrorCode, RetryClassification


# Canonical item lifecycle states.
#
# Keep this enum synchronized with batchrun/domain/lifecycle.py
# (ALLOWED_TRANSITIONS) and with the persisted schema in
# batchrun/lib/state/types.py.
class ItemStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_PERMANENT = "failed_permanent"


class AttemptOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class AttemptRecord:
    attempt_number: int
    started_at: datetime
    ended_at: datetime
    outcome: AttemptOutcome
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS


@dataclass
class ItemState:
    key: str
    status: ItemStatus = ItemStatus.PENDING
    attempts: list[AttemptRecord] = field(default_factory=list)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_error: str | None = None
    result_ref: str | None = None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def last_attempt(self) -> AttemptRecord | None:
        if not self.attempts:
            return None
        return self.attempts[-1]


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one perform() call as reported by the collaborator."""

    success: bool
    content: Any = None
    detail: str = ""
    error_code: ErrorCode | None = None
    retry_classification: RetryClassification | None = None

    @classmethod
    def ok(cls, content: Any, detail: str = "") -> OperationResult:
        return cls(success=True, content=content, detail=detail)

    @classmethod
    def failed(
        cls,
        detail: str,
        *,
        error_code: ErrorCode = "internal_error",
        retry_classification: RetryClassification | None = None,
    ) -> OperationResult:
        return cls(
            success=False,
            detail=detail,
            error_code=error_code,
            retry_classification=retry_classification,
        )


@dataclass(frozen=True)
class RetryOutcome:
    key: str
    content: Any
    attempt_log: list[AttemptRecord]


@dataclass(frozen=True)
class RunSummary:
    completed: int = 0
    failed: int = 0
    permanently_failed: int = 0
    pending: int = 0
    deferred: int = 0
    interrupted: bool = False

    @property
    def processed(self) -> int:
        return self.completed + self.failed + self.permanently_failed
