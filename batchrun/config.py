from __future__ import annotations

from dataclasses import dataclass, fields, replace
import os
from pathlib import Path
from typing import Any

import yaml

from batchrun.domain.backoff import BackoffPolicy


@dataclass(frozen=True)
class BatchSettings:
    max_attempts: int = 3
    concurrency: int = 3
    backoff_strategy: str = "linear"
    backoff_base_ms: int = 2000
    backoff_multiplier: float = 2.0
    backoff_cap_ms: int = 60000
    permanent_after_attempts: int = 9
    retry_gating: bool = True
    items_path: str = "data/crawler_links.json"
    state_path: str = "data/processing_status.json"
    output_dir: str = "data/links"
    fetch_timeout_ms: int = 180000

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_ms=self.backoff_base_ms,
            cap_ms=self.backoff_cap_ms,
            strategy=self.backoff_strategy,  # type: ignore[arg-type]
            multiplier=self.backoff_multiplier,
        )


def batch_settings_from_env() -> BatchSettings:
    defaults = BatchSettings()
    strategy = os.getenv("BATCH_BACKOFF_STRATEGY", defaults.backoff_strategy).strip().lower()
    if strategy not in ("linear", "exponential"):
        strategy = defaults.backoff_strategy
    return BatchSettings(
        max_attempts=_env_int("BATCH_MAX_ATTEMPTS", _env_int("MAX_RETRIES", defaults.max_attempts)),
        concurrency=_env_int("BATCH_CONCURRENCY", defaults.concurrency),
        backoff_strategy=strategy,
        backoff_base_ms=_env_int("BATCH_BACKOFF_BASE_MS", defaults.backoff_base_ms),
        backoff_multiplier=_env_float("BATCH_BACKOFF_MULTIPLIER", defaults.backoff_multiplier),
        backoff_cap_ms=_env_int("BATCH_BACKOFF_CAP_MS", defaults.backoff_cap_ms),
        permanent_after_attempts=_env_int(
            "BATCH_PERMANENT_AFTER_ATTEMPTS", defaults.permanent_after_attempts
        ),
        retry_gating=_env_bool("BATCH_RETRY_GATING", defaults.retry_gating),
        items_path=os.getenv("BATCH_ITEMS_PATH", defaults.items_path),
        state_path=os.getenv("BATCH_STATE_PATH", defaults.state_path),
        output_dir=os.getenv("BATCH_OUTPUT_DIR", defaults.output_dir),
        fetch_timeout_ms=_env_int("BATCH_FETCH_TIMEOUT_MS", defaults.fetch_timeout_ms),
    )


def load_settings_file(*, file_path: str | Path, base: BatchSettings) -> BatchSettings:
    data = yaml.safe_load(Path(file_path).read_text(encoding="utf-8"))
    if data is None:
        return base
    if not isinstance(data, dict):
        raise ValueError("batch config must be a YAML mapping")
    return apply_overrides(base, data)


def apply_overrides(base: BatchSettings, overrides: dict[str, Any]) -> BatchSettings:
    known = {item.name for item in fields(BatchSettings)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"unknown batch config keys: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for name, value in overrides.items():
        if value is None:
            continue
        values[name] = _coerce(name, value, getattr(base, name))

    settings = replace(base, **values)
    validate_settings(settings)
    return settings


def validate_settings(settings: BatchSettings) -> None:
    for name in ("max_attempts", "concurrency", "permanent_after_attempts", "fetch_timeout_ms"):
        if getattr(settings, name) < 1:
            raise ValueError(f"{name} must be >= 1")
    # Raises ValueError for bad backoff values.
    settings.backoff_policy()


def _coerce(name: str, value: Any, current: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _BOOL_VALUES:
            return _BOOL_VALUES[value.strip().lower()]
        raise ValueError(f"{name} must be a boolean")
    if isinstance(current, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} must be an integer")
        return value
    if isinstance(current, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


_BOOL_VALUES = {"true": True, "1": True, "yes": True, "false": False, "0": False, "no": False}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = float(value)
    except ValueError:
        return default

    return parsed if parsed >= 1 else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return _BOOL_VALUES.get(value.strip().lower(), default)
