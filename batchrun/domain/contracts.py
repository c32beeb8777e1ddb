from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from batchrun.domain.models import ItemState, OperationResult

# Opaque domain operation, invoked once per attempt.
PerformOperation = Callable[[str], Awaitable[OperationResult]]


@runtime_checkable
class StateStore(Protocol):
    """Durable key -> ItemState mapping backed by one serialized snapshot.

    ``load`` never raises on unreadable content: a corrupt snapshot is logged
    and reported as an empty mapping. ``save_all`` replaces the snapshot
    atomically and serializes concurrent callers.
    """

    async def load(self) -> dict[str, ItemState]: ...

    async def save_all(self, states: Mapping[str, ItemState]) -> None: ...


@runtime_checkable
class ResultSink(Protocol):
    """Stores a successful item's content and returns an opaque reference."""

    async def save(self, key: str, content: Any) -> str: ...
