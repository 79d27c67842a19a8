from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import SOON_WINDOW_HOURS
from .lifecycle import BookingStatus, can_review
from .models import Booking
from .timer import as_utc, is_urgent

HIDDEN_WHEN_CLOSED = (BookingStatus.CANCELLED.value, BookingStatus.DECLINED.value)


def _epoch(dt: datetime | None) -> float:
    return as_utc(dt).timestamp() if dt else 0.0


def sort_bookings(bookings: list) -> list:
    """
    Scheduled bookings first, soonest first; the rest newest first.
    """
    scheduled = sorted((b for b in bookings if b.scheduled_at), key=lambda b: _epoch(b.scheduled_at))
    unscheduled = sorted((b for b in bookings if not b.scheduled_at), key=lambda b: _epoch(b.created_at), reverse=True)
    return scheduled + unscheduled


def apply_filters(
    bookings: list,
    status: str | None = None,
    service_type: str | None = None,
    include_completed: bool = False,
    include_cancelled: bool = False,
) -> list:
    result = list(bookings)

    if status:
        result = [b for b in result if b.status == status]
    else:
        if not include_completed:
            result = [b for b in result if b.status != BookingStatus.COMPLETED.value]
        if not include_cancelled:
            result = [b for b in result if b.status not in HIDDEN_WHEN_CLOSED]

    if service_type:
        result = [b for b in result if (b.service_snapshot or {}).get("type") == service_type]

    return sort_bookings(result)


def upcoming(bookings: list, now: datetime) -> tuple[list, bool]:
    now = as_utc(now)
    future = [
        b for b in bookings
        if b.status == BookingStatus.CONFIRMED.value and b.scheduled_at and as_utc(b.scheduled_at) > now
    ]
    future = sort_bookings(future)
    soon = now + timedelta(hours=SOON_WINDOW_HOURS)
    has_soon = any(as_utc(b.scheduled_at) <= soon for b in future)
    return future, has_soon


def past(bookings: list, now: datetime) -> list:
    now = as_utc(now)
    result = []
    for b in bookings:
        if b.status == BookingStatus.COMPLETED.value:
            result.append(b)
        elif b.status == BookingStatus.CONFIRMED.value and b.scheduled_at and as_utc(b.scheduled_at) < now:
            result.append(b)
    return sorted(result, key=lambda b: _epoch(b.scheduled_at or b.created_at), reverse=True)


def urgent_count(requests: list, now: datetime) -> int:
    return sum(
        1 for r in requests
        if r.status == BookingStatus.PENDING_PROVIDER.value and is_urgent(r.expires_at, r.created_at, now)
    )


def needing_review(bookings: list) -> list:
    return [b for b in bookings if can_review(b)]


async def fetch_for_actor(db: AsyncSession, actor, role: str | None = None, status: str | None = None) -> list:
    """
    role narrows to one side of the booking; admins without a role filter see everything.
    """
    stmt = select(Booking)
    if role == "provider":
        stmt = stmt.where(Booking.provider_id == actor.sub)
    elif role == "applicant":
        stmt = stmt.where(Booking.applicant_id == actor.sub)
    elif not actor.has_role("admin"):
        stmt = stmt.where(or_(Booking.provider_id == actor.sub, Booking.applicant_id == actor.sub))

    if status:
        stmt = stmt.where(Booking.status == status)

    res = await db.execute(stmt)
    return list(res.scalars().all())
