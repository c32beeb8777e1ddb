from __future__ import annotations

from collections import Counter
import logging

from fastapi import FastAPI, HTTPException

from batchrun.api.schemas import (
    AttemptResponse,
    ErrorResponse,
    HealthResponse,
    ItemStateResponse,
    StatusCounts,
    StatusResponse,
)
from batchrun.domain.contracts import StateStore
from batchrun.domain.models import ItemState


def build_app(*, role: str, run_id: str, store: StateStore) -> FastAPI:
    logger = logging.getLogger("runtime")
    app = FastAPI(title="batchrun", version="0.1.0")

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role)

    @app.get("/status", response_model=StatusResponse, tags=["State"])
    async def status() -> StatusResponse:
        states = await store.load()
        counts = Counter(state.status.value for state in states.values())
        return StatusResponse(
            run_id=run_id,
            total=len(states),
            counts=StatusCounts(**counts),
        )

    @app.get(
        "/items/{key:path}",
        response_model=ItemStateResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["State"],
    )
    async def get_item(key: str) -> ItemStateResponse:
        states = await store.load()
        state = states.get(key)
        if state is None:
            logger.info("item not found", extra={"role": role, "run_id": run_id, "item_key": key})
            raise HTTPException(status_code=404, detail=f"item not found: {key}")
        return _to_response(state)

    return app


def _to_response(state: ItemState) -> ItemStateResponse:
    return ItemStateResponse(
        key=state.key,
        status=state.status.value,
        attempts=[
            AttemptResponse(
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
