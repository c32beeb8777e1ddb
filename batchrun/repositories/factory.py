from __future__ import annotations

import os
from pathlib import Path

from batchrun.domain.contracts import StateStore
from batchrun.repositories.json_file import JsonFileStateStore
from batchrun.repositories.stub import InMemoryStateStore

DEFAULT_STATE_PATH = "data/processing_status.json"


def build_state_store(*, path: str | Path | None = None, in_memory: bool = False) -> StateStore:
    if in_memory:
        return InMemoryStateStore()
    resolved = path or os.getenv("BATCH_STATE_PATH", DEFAULT_STATE_PATH)
    return JsonFileStateStore(path=Path(resolved))
