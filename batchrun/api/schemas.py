from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = Field(examples=["ok"])
    role: str


class StatusCounts(BaseModel):
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed_retryable: int = 0
    failed_permanent: int = 0


class StatusResponse(BaseModel):
    run_id: str
    total: int
    counts: StatusCounts


class AttemptResponse(BaseModel):
    attempt_number: int
    started_at: datetime
    ended_at: datetime
    outcome: str
    error: str | None = None


class ItemStateResponse(BaseModel):
    key: str
    status: str
    attempts: list[AttemptResponse]
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_error: str | None = None
    result_ref: str | None = None


class ErrorResponse(BaseModel):
    detail: str
