from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
import json
import logging
from typing import Any

from pydantic import ValidationError

from batchrun.domain.errors import CorruptStateError
from batchrun.domain.models import AttemptOutcome, AttemptRecord, ItemState, ItemStatus
from batchrun.lib.state.types import (
    STATE_SCHEMA_VERSION,
    AttemptRecordModel,
    ItemStateRecord,
    StateDocument,
)

logger = logging.getLogger("state")

LEGACY_RESULT_REF_PREFIX = "legacy://"


def encode_states(states: Mapping[str, ItemState], *, now: datetime | None = None) -> bytes:
    document = StateDocument(
        schema_version=STATE_SCHEMA_VERSION,
        updated_at=now or datetime.now(tz=UTC),
        items=[_to_record(state) for state in states.values()],
    )
    return json.dumps(document.model_dump(mode="json"), indent=2, ensure_ascii=False).encode("utf-8")


def decode_states(payload: bytes) -> dict[str, ItemState]:
    if not payload.strip():
        return {}

    try:
        raw = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptStateError(f"state snapshot is not valid JSON: {exc}") from exc

    if isinstance(raw, list) or (isinstance(raw, dict) and "links" in raw and "items" not in raw):
        raw = migrate_legacy_document(raw)

    if not isinstance(raw, dict):
        raise CorruptStateError("state snapshot must be a JSON object")

    version = raw.get("schema_version", STATE_SCHEMA_VERSION)
    if version != STATE_SCHEMA_VERSION:
        raise CorruptStateError(f"unsupported state schema version: {version}")

    try:
        document = StateDocument.model_validate(raw)
    except ValidationError as exc:
        raise CorruptStateError(f"state snapshot failed validation: {exc.error_count()} error(s)") from exc

    states: dict[str, ItemState] = {}
    for record in document.items:
        if record.key in states:
            logger.warning("duplicate state record, keeping last", extra={"item_key": record.key})
        states[record.key] = _from_record(record)
    return states


def migrate_legacy_document(raw: Any) -> dict[str, Any]:
    """Convert the older snapshot shapes into a v1 document.

    Two shapes are understood: a bare array of processed keys, and the
    ``{"meta", "stats", "links": [...]}`` status document.
    """
    items: list[dict[str, Any]] = []
    if isinstance(raw, list):
        for key in raw:
            if not isinstance(key, str):
                raise CorruptStateError("legacy processed-key list must contain only strings")
            items.append(_legacy_completed(key, None))
    elif isinstance(raw, dict) and isinstance(raw.get("links"), list):
        for link in raw["links"]:
            if not isinstance(link, dict) or not isinstance(link.get("url"), str):
                raise CorruptStateError("legacy link entry must be an object with a url")
            key = link["url"]
            status = link.get("status")
            updated_at = link.get("updatedAt")
            if status == "completed":
                items.append(_legacy_completed(key, updated_at))
            elif status == "failed":
                items.append(
                    {
                        "key": key,
                        "status": "failed_retryable",
                        "attempts": [
                            {
                                "attempt_number": 1,
                                "started_at": updated_at,
                                "ended_at": updated_at,
                                "outcome": "failure",
                                "error": link.get("error") or "internal_error",
                            }
                        ],
                        "ended_at": updated_at,
                        "last_error": link.get("error") or "internal_error",
                    }
                )
            else:
                items.append({"key": key, "status": "pending"})
    else:
        raise CorruptStateError("unrecognized legacy state shape")

    logger.info("migrated legacy state snapshot", extra={"status": f"{len(items)} records"})
    return {"schema_version": STATE_SCHEMA_VERSION, "items": items}


def _legacy_completed(key: str, at: str | None) -> dict[str, Any]:
    return {
        "key": key,
        "status": "completed",
        "attempts": [{"attempt_number": 1, "started_at": at, "ended_at": at, "outcome": "success"}],
        "ended_at": at,
        "result_ref": f"{LEGACY_RESULT_REF_PREFIX}{key}",
    }


def _to_record(state: ItemState) -> ItemStateRecord:
    return ItemStateRecord(
        key=state.key,
        status=state.status.value,
        attempts=[
            AttemptRecordModel(
                attempt_number=attempt.attempt_number,
                started_at=attempt.started_at,
                ended_at=attempt.ended_at,
                outcome=attempt.outcome.value,
                error=attempt.error,
            )
            for attempt in state.attempts
        ],
        started_at=state.started_at,
        ended_at=state.ended_at,
        last_error=state.last_error,
        result_ref=state.result_ref,
    )


def _from_record(record: ItemStateRecord) -> ItemState:
    attempts: list[AttemptRecord] = []
    for model in record.attempts:
        started_at = _as_utc(model.started_at or model.ended_at) or _EPOCH
        attempts.append(
            AttemptRecord(
                attempt_number=model.attempt_number,
                started_at=started_at,
                ended_at=_as_utc(model.ended_at) or started_at,
                outcome=AttemptOutcome(model.outcome),
                error=(model.error or "internal_error") if model.outcome == "failure" else None,
            )
        )
    return ItemState(
        key=record.key,
        status=ItemStatus(record.status),
        attempts=attempts,
        started_at=_as_utc(record.started_at),
        ended_at=_as_utc(record.ended_at),
        last_error=record.last_error,
        result_ref=record.result_ref,
    )


def _as_utc(value: datetime | None) -> datetime | None:
    # Naive timestamps in older snapshots are UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
