from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

# v1 persisted snapshot models. Every field except the key has a default so
# records written by older builds still load.

STATE_SCHEMA_VERSION = "state:v1"

PersistedStatus = Literal["pending", "in_progress", "completed", "failed_retryable", "failed_permanent"]


class AttemptRecordModel(BaseModel):
    attempt_number: int = Field(ge=1)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    outcome: Literal["success", "failure"] = "failure"
    error: str | None = None


class ItemStateRecord(BaseModel):
    key: str = Field(min_length=1)
    status: PersistedStatus = "pending"
    attempts: list[AttemptRecordModel] = Field(default_factory=list)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_error: str | None = None
    result_ref: str | None = None


class StateDocument(BaseModel):
    schema_version: str = Field(default=STATE_SCHEMA_VERSION)
    updated_at: datetime | None = None
    items: list[ItemStateRecord] = Field(default_factory=list)
