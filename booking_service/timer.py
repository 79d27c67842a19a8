from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .config import PROVIDER_RESPONSE_HOURS, URGENT_WINDOW_HOURS

HOUR = timedelta(hours=1)
MINUTE = timedelta(minutes=1)


@dataclass(frozen=True)
class TimeRemaining:
    expired: bool
    hours: int
    minutes: int
    expires_at: datetime | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """
    Naive datetimes are treated as UTC (SQLite drops tzinfo on the way back).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def response_deadline(created_at: datetime) -> datetime:
    return as_utc(created_at) + timedelta(hours=PROVIDER_RESPONSE_HOURS)


def effective_expiry(expires_at: datetime | None, created_at: datetime | None) -> datetime | None:
    if expires_at is not None:
        return as_utc(expires_at)
    if created_at is not None:
        return response_deadline(created_at)
    return None


def time_remaining(expires_at: datetime, now: datetime) -> TimeRemaining:
    expires_at = as_utc(expires_at)
    remaining = expires_at - as_utc(now)

    if remaining <= timedelta(0):
        return TimeRemaining(expired=True, hours=0, minutes=0, expires_at=expires_at)

    hours = remaining // HOUR
    minutes = (remaining % HOUR) // MINUTE
    return TimeRemaining(expired=False, hours=hours, minutes=minutes, expires_at=expires_at)


def is_urgent(expires_at: datetime | None, created_at: datetime | None, now: datetime) -> bool:
    expiry = effective_expiry(expires_at, created_at)
    if expiry is None:
        return False
    return expiry <= as_utc(now) + timedelta(hours=URGENT_WINDOW_HOURS)
