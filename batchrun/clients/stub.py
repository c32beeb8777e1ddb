from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from batchrun.domain.models import OperationResult


@dataclass
class ScriptedPerform:
    """Deterministic perform() for tests and skeleton mode.

    ``script`` maps a key to the outcomes of its successive calls; keys without
    a script (or past the end of it) succeed with ``{"key": key}``.
    """

    script: dict[str, list[OperationResult]] = field(default_factory=dict)
    delay_seconds: float = 0.0
    calls: list[str] = field(default_factory=list)
    active: int = 0
    max_active: int = 0

    async def __call__(self, key: str) -> OperationResult:
        self.calls.append(key)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            outcomes = self.script.get(key)
            if outcomes:
                return outcomes.pop(0)
            return OperationResult.ok({"key": key})
        finally:
            self.active -= 1

    def call_count(self, key: str) -> int:
        return self.calls.count(key)


def always_fail(detail: str = "boom", *, times: int = 1) -> list[OperationResult]:
    return [OperationResult.failed(detail, error_code="fetch_failed") for _ in range(times)]
