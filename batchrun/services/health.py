from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
import uuid


@dataclass
class ItemsFileCheck:
    path: str
    exists: bool = False
    readable: bool = False
    valid: bool = False


@dataclass
class OutputDirCheck:
    path: str
    exists: bool = False
    writable: bool = False


@dataclass
class HealthReport:
    items_file: ItemsFileCheck
    output_dir: OutputDirCheck

    @property
    def healthy(self) -> bool:
        return self.items_file.valid and self.output_dir.writable

    def as_dict(self) -> dict[str, dict[str, object]]:
        return {
            "items_file": vars(self.items_file).copy(),
            "output_dir": vars(self.output_dir).copy(),
        }


def check_filesystem(*, items_path: str | Path, output_dir: str | Path) -> HealthReport:
    items = ItemsFileCheck(path=str(items_path))
    items_file = Path(items_path)
    items.exists = items_file.is_file()
    if items.exists:
        try:
            content = items_file.read_text(encoding="utf-8")
            items.readable = True
            items.valid = isinstance(json.loads(content), list)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            pass

    output = OutputDirCheck(path=str(output_dir))
    directory = Path(output_dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        output.exists = True
        probe = directory / f".write-probe-{uuid.uuid4().hex}"
        probe.write_text("ok", encoding="utf-8")
        probe.unlink()
        output.writable = True
    except OSError:
        pass

    return HealthReport(items_file=items, output_dir=output)
