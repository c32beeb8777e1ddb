from __future__ import annotations

from collections.abc import Mapping
import copy
from dataclasses import dataclass, field
from typing import Any

from batchrun.domain.errors import PersistenceFailureError
from batchrun.domain.models import ItemState


@dataclass
class InMemoryStateStore:
    """Non-durable store with deterministic behavior for tests and skeleton mode.

    Snapshots are deep-copied on save and load so callers cannot mutate what
    was persisted.
    """

    states: dict[str, ItemState] = field(default_factory=dict)
    snapshots: list[dict[str, ItemState]] = field(default_factory=list)
    fail_after_saves: int | None = None
    corrupt: bool = False

    async def load(self) -> dict[str, ItemState]:
        if self.corrupt:
            return {}
        return copy.deepcopy(self.states)

    async def save_all(self, states: Mapping[str, ItemState]) -> None:
        if self.fail_after_saves is not None and len(self.snapshots) >= self.fail_after_saves:
            raise PersistenceFailureError("in-memory store configured to fail")
        snapshot = copy.deepcopy(dict(states))
        self.snapshots.append(snapshot)
        self.states = snapshot


@dataclass
class InMemoryResultSink:
    results: dict[str, Any] = field(default_factory=dict)
    saves: list[str] = field(default_factory=list)

    async def save(self, key: str, content: Any) -> str:
        self.saves.append(key)
        self.results[key] = content
        return f"memory://{key}"
