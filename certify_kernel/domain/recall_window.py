"""
Recall time window arithmetic.

A treatment may be recalled while ``now - occurred_at < window``.  The upper
bound is exclusive: at exactly ``occurred_at + window`` the recall is refused.
Both instants are compared in UTC.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

DEFAULT_RECALL_WINDOW = timedelta(hours=24)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"Naive datetime not allowed: {value!r}")
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RecallWindowPolicy:
    window: timedelta = DEFAULT_RECALL_WINDOW

    def deadline(self, occurred_at: datetime) -> datetime:
        """First instant at which the recall is no longer allowed."""
        return _as_utc(occurred_at) + self.window

    def is_open(self, occurred_at: datetime, now: datetime) -> bool:
        return _as_utc(now) < self.deadline(occurred_at)

    def remaining(self, occurred_at: datetime, now: datetime) -> timedelta:
        """Time left before the deadline; zero once it has passed."""
        left = self.deadline(occurred_at) - _as_utc(now)
        return max(left, timedelta(0))
