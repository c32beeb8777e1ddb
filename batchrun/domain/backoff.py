from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

BackoffStrategy = Literal["linear", "exponential"]


@dataclass(frozen=True)
class BackoffPolicy:
    """Maps a 1-based attempt number to the wait before the next attempt.

    linear:      min(base_ms * n, cap_ms)
    exponential: min(base_ms * multiplier ** (n - 1), cap_ms)
    """

    base_ms: int = 2000
    cap_ms: int = 60000
    strategy: BackoffStrategy = "linear"
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.base_ms < 0:
            raise ValueError("backoff base_ms must be non-negative")
        if self.cap_ms < 0:
            raise ValueError("backoff cap_ms must be non-negative")
        if self.strategy not in ("linear", "exponential"):
            raise ValueError(f"unsupported backoff strategy: {self.strategy}")
        if self.multiplier < 1:
            raise ValueError("backoff multiplier must be >= 1")

    def delay_ms(self, attempt_number: int) -> float:
        if attempt_number < 1:
            raise ValueError("attempt_number must be positive")
        if self.strategy == "linear":
            raw = float(self.base_ms * attempt_number)
        else:
            # Cap the exponent growth before it overflows float range.
            try:
                raw = self.base_ms * self.multiplier ** (attempt_number - 1)
            except OverflowError:
                raw = float(self.cap_ms)
        return min(raw, float(self.cap_ms))

    def delay_seconds(self, attempt_number: int) -> float:
        return self.delay_ms(attempt_number) / 1000


def linear_backoff(*, base_ms: int = 2000, cap_ms: int = 60000) -> BackoffPolicy:
    return BackoffPolicy(base_ms=base_ms, cap_ms=cap_ms, strategy="linear")


def exponential_backoff(*, base_ms: int = 2000, multiplier: float = 2.0, cap_ms: int = 60000) -> BackoffPolicy:
    return BackoffPolicy(base_ms=base_ms, cap_ms=cap_ms, strategy="exponential", multiplier=multiplier)
