from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
from pathlib import Path
import time
from typing import Any
import uuid


@dataclass
class FileResultSink:
    """Writes one JSON document per completed item into ``output_dir``."""

    output_dir: Path

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)

    async def save(self, key: str, content: Any) -> str:
        file_path = self.output_dir / f"result_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.json"
        payload = json.dumps({"key": key, "content": content}, indent=2, ensure_ascii=False, default=str)
        await asyncio.to_thread(self._write, file_path, payload)
        return str(file_path)

    def _write(self, file_path: Path, payload: str) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        file_path.write_text(payload, encoding="utf-8")
