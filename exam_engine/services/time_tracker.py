"""Elapsed/remaining time for in-progress attempts.

Client-reported deltas are accumulated, never absolute durations, and the
total is bounded by wall-clock time since ``started_at`` (and the test's
``end_time``) so a client cannot report more time than has passed.
"""

from datetime import datetime
from typing import Callable

from exam_engine.config import settings
from exam_engine.core.clock import as_utc, elapsed_ms, utcnow
from exam_engine.db.models import Attempt, OnlineTest


class TimeTracker:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    @staticmethod
    def duration_ms(test: OnlineTest) -> int:
        minutes = test.duration_minutes or settings.DEFAULT_DURATION_MINUTES
        return int(minutes) * 60_000

    @staticmethod
    def clip_delta(delta_ms: int | None) -> int:
        if not delta_ms or delta_ms < 0:
            return 0
        return int(delta_ms)

    def active_cap_ms(
        self,
        attempt: Attempt,
        now: datetime | None = None,
        end_time: datetime | None = None,
    ) -> int:
        """Upper bound for ``time_spent_ms``: wall time since start, up to the window end."""
        if attempt.started_at is None:
            return 0
        now = now or self.now()
        end = as_utc(end_time)
        if end is not None and end < now:
            now = end
        return elapsed_ms(attempt.started_at, now)

    def is_expired(
        self,
        attempt: Attempt,
        max_duration_ms: int,
        now: datetime | None = None,
        end_time: datetime | None = None,
    ) -> bool:
        """True once wall-clock or accumulated active time exceeds the duration.

        Passing the scheduling window's ``end_time`` also counts as expiry.
        """
        if attempt.started_at is None:
            return False
        now = now or self.now()
        if elapsed_ms(attempt.started_at, now) > max_duration_ms:
            return True
        if (attempt.time_spent_ms or 0) > max_duration_ms:
            return True
        end = as_utc(end_time)
        return end is not None and now > end

    def remaining_ms(
        self,
        attempt: Attempt,
        max_duration_ms: int,
        now: datetime | None = None,
        end_time: datetime | None = None,
    ) -> int:
        if attempt.started_at is None:
            return max_duration_ms
        now = now or self.now()
        remaining = max_duration_ms - elapsed_ms(attempt.started_at, now)
        end = as_utc(end_time)
        if end is not None:
            remaining = min(remaining, elapsed_ms(now, end))
        return max(0, remaining)
