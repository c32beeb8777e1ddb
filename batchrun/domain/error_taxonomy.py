from __future__ import annotations

from typing import Literal

# Canonical error vocabulary reported by perform collaborators.
ErrorCode = Literal[
    "fetch_failed",
    "timeout",
    "http_client_error",
    "content_missing",
    "result_sink_failed",
    "resource_unavailable",
    "internal_error",
]

RetryClassification = Literal["recoverable", "fatal"]

# Allowed persisted values for ItemState.last_error prefixes.
CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "fetch_failed",
    "timeout",
    "http_client_error",
    "content_missing",
    "result_sink_failed",
    "resource_unavailable",
    "internal_error",
)

# Errors that mean the shared resource behind perform is gone; the run aborts.
FATAL_ERROR_CODES: frozenset[ErrorCode] = frozenset({"resource_unavailable"})


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def classify_error(code: ErrorCode) -> RetryClassification:
    if code in FATAL_ERROR_CODES:
        return "fatal"
    return "recoverable"


def resolve_error_code(code: str | None) -> ErrorCode:
    if code is not None and is_canonical_error_code(code):
        return code  # type: ignore[return-value]
    # Keep persistence stable even if the collaborator emitted an unsupported code.
    return "internal_error"


def format_error(code: ErrorCode, message: str) -> str:
    if not message:
        return code
    return f"{code}: {message}"
