from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, field_validator

SECONDS_PER_DAY = 24 * 60 * 60


class ProcessingClock(BaseModel, frozen=True):
    """Single notion of "now" shared by every stage of one batch."""

    now: datetime

    @field_validator("now")
    @classmethod
    def now_must_be_timezone_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError("ProcessingClock value must be timezone-aware")
        return value

    @classmethod
    def utcnow(cls) -> ProcessingClock:
        return cls(now=datetime.now(timezone.utc))

    def days_since(self, moment: datetime) -> float:
        """Days elapsed since ``moment``, never negative."""
        return max(0.0, (self.now - ensure_aware(moment)).total_seconds() / SECONDS_PER_DAY)

    def window_start(self, days: float) -> datetime:
        return self.now - timedelta(days=days)


def ensure_aware(moment: datetime) -> datetime:
    # naive timestamps from upstream are treated as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
