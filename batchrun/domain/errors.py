from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from batchrun.domain.models import AttemptRecord


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainInvariantError(DomainError):
    pass


class InvalidInputFormatError(DomainValidationError):
    pass


class CorruptStateError(DomainError):
    pass


class PersistenceFailureError(DomainError):
    pass


class FatalOperationError(DomainError):
    """Raised when the collaborator reports its underlying resource unusable."""

    def __init__(self, message: str, *, key: str | None = None, error_code: str | None = None) -> None:
        super().__init__(message)
        self.key = key
        self.error_code = error_code


class RetriesExhaustedError(DomainError):
    def __init__(
        self,
        *,
        key: str,
        attempt_log: list[AttemptRecord],
        last_error: str,
        interrupted: bool = False,
    ) -> None:
        reason = "interrupted" if interrupted else "retries exhausted"
        super().__init__(f"{reason} for {key} after {len(attempt_log)} attempt(s): {last_error}")
        self.key = key
        self.attempt_log = attempt_log
        self.last_error = last_error
        self.interrupted = interrupted
