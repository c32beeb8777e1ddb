from __future__ import annotations

from collections.abc import Callable

from batchrun.domain.errors import DomainInvariantError
from batchrun.domain.models import AttemptOutcome, ItemState, ItemStatus

TERMINAL_STATUSES: frozenset[ItemStatus] = frozenset(
    {
        ItemStatus.COMPLETED,
        ItemStatus.FAILED_PERMANENT,
    }
)

ALLOWED_TRANSITIONS: dict[ItemStatus, set[ItemStatus]] = {
    ItemStatus.PENDING: {ItemStatus.IN_PROGRESS},
    ItemStatus.FAILED_RETRYABLE: {ItemStatus.IN_PROGRESS},
    ItemStatus.IN_PROGRESS: {
        ItemStatus.COMPLETED,
        ItemStatus.FAILED_RETRYABLE,
        ItemStatus.FAILED_PERMANENT,
        # Reclaim path for records left behind by a crashed run.
        ItemStatus.PENDING,
    },
    ItemStatus.COMPLETED: set(),
    ItemStatus.FAILED_PERMANENT: set(),
}

RetryPolicy = Callable[[ItemState], ItemStatus]


def is_terminal(status: ItemStatus) -> bool:
    return status in TERMINAL_STATUSES


def transition(state: ItemState, to_status: ItemStatus) -> None:
    allowed = ALLOWED_TRANSITIONS.get(state.status, set())
    if to_status not in allowed:
        raise DomainInvariantError(
            f"illegal transition for {state.key}: {state.status} -> {to_status}"
        )
    state.status = to_status


def lifetime_attempt_limit(limit: int) -> RetryPolicy:
    """Retryable while the item's lifetime attempt count is below ``limit``."""
    if limit < 1:
        raise ValueError("attempt limit must be >= 1")

    def _policy(state: ItemState) -> ItemStatus:
        if state.attempt_count < limit:
            return ItemStatus.FAILED_RETRYABLE
        return ItemStatus.FAILED_PERMANENT

    return _policy


def reclaim_stale(state: ItemState) -> bool:
    """Return an InProgress record from a crashed run to a schedulable status."""
    if state.status != ItemStatus.IN_PROGRESS:
        return False
    if state.attempts:
        transition(state, ItemStatus.FAILED_RETRYABLE)
        if state.last_error is None:
            state.last_error = "internal_error: interrupted before completion"
    else:
        transition(state, ItemStatus.PENDING)
    return True


def check_invariants(state: ItemState) -> None:
    successes = sum(1 for attempt in state.attempts if attempt.outcome == AttemptOutcome.SUCCESS)
    numbers = [attempt.attempt_number for attempt in state.attempts]
    if numbers != list(range(1, len(numbers) + 1)):
        raise DomainInvariantError(f"attempt numbers are not gapless for {state.key}: {numbers}")
    if state.status == ItemStatus.COMPLETED:
        if successes != 1 or state.result_ref is None:
            raise DomainInvariantError(f"completed item {state.key} must have one success and a result ref")
    elif successes or state.result_ref is not None:
        raise DomainInvariantError(f"non-completed item {state.key} carries a success or result ref")
    if state.status not in (ItemStatus.PENDING, ItemStatus.IN_PROGRESS) and not state.attempts:
        raise DomainInvariantError(f"item {state.key} left pending without attempts")
