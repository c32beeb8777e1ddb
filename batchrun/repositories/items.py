from __future__ import annotations

from collections.abc import Iterable, Sequence
import json
import logging
from pathlib import Path
from typing import Any

from batchrun.domain.errors import InvalidInputFormatError

logger = logging.getLogger("runtime")


def validate_items(raw: Any) -> list[str]:
    """Check that ``raw`` is a sequence of non-empty strings; drop duplicates in order."""
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
        raise InvalidInputFormatError("item list must be an array of strings")

    seen: set[str] = set()
    items: list[str] = []
    for index, value in enumerate(raw):
        if not isinstance(value, str) or not value:
            raise InvalidInputFormatError(f"item at index {index} is not a non-empty string")
        if value in seen:
            continue
        seen.add(value)
        items.append(value)
    return items


def load_items(path: str | Path) -> list[str]:
    file_path = Path(path)
    try:
        raw = json.loads(file_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise InvalidInputFormatError(f"item list not found: {file_path}") from exc
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidInputFormatError(f"item list is not valid JSON: {exc}") from exc

    items = validate_items(raw)
    if len(items) != len(raw):
        logger.info(
            "dropped duplicate items",
            extra={"status": f"{len(raw) - len(items)} duplicates"},
        )
    return items


def ensure_items_file(path: str | Path) -> bool:
    file_path = Path(path)
    if file_path.exists():
        return False
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text("[]", encoding="utf-8")
    logger.info("created new item list", extra={"status": str(file_path)})
    return True


def add_items(path: str | Path, new_items: Iterable[str]) -> list[str]:
    file_path = Path(path)
    ensure_items_file(file_path)
    current = load_items(file_path)
    merged = validate_items([*current, *new_items])
    file_path.write_text(json.dumps(merged, indent=2, ensure_ascii=False), encoding="utf-8")
    return merged
