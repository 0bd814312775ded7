"""No-response retry tracking per notification."""

from __future__ import annotations

import time
from dataclasses import dataclass

NO_RESPONSE_RETRY_LIMIT = 3
NO_RESPONSE_RETRY_RESET_SECONDS = 10 * 60


@dataclass(frozen=True)
class RetryDecision:
    attempt: int
    should_retry: bool


@dataclass
class RetryState:
    attempt: int
    first_attempt_at: float
    last_attempt_at: float


class RetryTracker:
    """Counts consecutive no-response outcomes for each notification.

    A streak starts at attempt 1 and stops retrying once it reaches the
    ceiling. Streaks older than the reset window start over, so a
    notification that went quiet for a while gets a fresh budget.
    """

    def __init__(
        self,
        limit: int = NO_RESPONSE_RETRY_LIMIT,
        reset_after: float = NO_RESPONSE_RETRY_RESET_SECONDS,
    ) -> None:
        if limit < 1:
            raise ValueError("Retry limit must be at least 1")
        self._limit = limit
        self._reset_after = reset_after
        self._states: dict[str, RetryState] = {}

    @property
    def limit(self) -> int:
        return self._limit

    def get_retry_decision(self, notification_id: str, now: float | None = None) -> RetryDecision:
        """Record one more no-response outcome and decide whether to retry."""
        now = time.time() if now is None else now
        state = self._states.get(notification_id)
        if state is None or now - state.first_attempt_at > self._reset_after:
            state = RetryState(attempt=1, first_attempt_at=now, last_attempt_at=now)
        else:
            state = RetryState(
                attempt=state.attempt + 1,
                first_attempt_at=state.first_attempt_at,
                last_attempt_at=now,
            )
        self._states[notification_id] = state
        return RetryDecision(attempt=state.attempt, should_retry=state.attempt < self._limit)

    def clear(self, notification_id: str) -> None:
        self._states.pop(notification_id, None)

    def get(self, notification_id: str) -> RetryState | None:
        return self._states.get(notification_id)

    def __len__(self) -> int:
        return len(self._states)
