from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import tempfile

from batchrun.domain.errors import CorruptStateError, PersistenceFailureError
from batchrun.domain.models import ItemState
from batchrun.lib.state import decode_states, encode_states

logger = logging.getLogger("state")


@dataclass
class JsonFileStateStore:
    """StateStore backed by a single JSON snapshot file.

    Writes go to a temporary file in the target directory and are moved into
    place with ``os.replace`` so readers never observe a partial snapshot.
    """

    path: Path
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)
    saves_total: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    async def load(self) -> dict[str, ItemState]:
        try:
            return await self.read_snapshot()
        except CorruptStateError as exc:
            logger.warning(
                "state snapshot is corrupt, starting with empty state",
                extra={"status": str(exc)},
            )
            return {}

    async def read_snapshot(self) -> dict[str, ItemState]:
        async with self._lock:
            payload = await asyncio.to_thread(self._read_bytes)
        if payload is None:
            return {}
        return decode_states(payload)

    async def save_all(self, states: Mapping[str, ItemState]) -> None:
        async with self._lock:
            # Encode before the first await so the snapshot reflects one instant.
            payload = encode_states(states)
            try:
                await asyncio.to_thread(self._write_atomic, payload)
            except OSError as exc:
                logger.error("state snapshot write failed", extra={"status": str(exc)})
                raise PersistenceFailureError(f"cannot write state snapshot {self.path}: {exc}") from exc
            self.saves_total += 1

    def _read_bytes(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CorruptStateError(f"cannot read state snapshot {self.path}: {exc}") from exc

    def _write_atomic(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
