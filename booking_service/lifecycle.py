"""
Booking status machine.

States:
  - pending_provider: waiting for the provider, until expires_at
  - confirmed: accepted (or booked instantly)
  - completed / cancelled / declined: terminal

"Expired" is never stored. It is derived from expires_at elapsing while the
booking is still pending_provider.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .config import JOIN_EARLY_MINUTES, JOIN_LATE_MINUTES, DEFAULT_DURATION_MINUTES
from .errors import Conflict
from .timer import TimeRemaining, as_utc, effective_expiry, time_remaining


class BookingStatus(str, enum.Enum):
    PENDING_PROVIDER = "pending_provider"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DECLINED = "declined"


class BookingAction(str, enum.Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    CANCEL = "cancel"
    COMPLETE = "complete"
    RESCHEDULE = "reschedule"


class Delivery(str, enum.Enum):
    LIVE = "live"
    ASYNC = "async"


class BookingModel(str, enum.Enum):
    INSTANT = "instant"
    REQUIRES_CONFIRMATION = "requires_confirmation"


STATUS_LABELS = {
    BookingStatus.PENDING_PROVIDER: "Awaiting Confirmation",
    BookingStatus.CONFIRMED: "Confirmed",
    BookingStatus.COMPLETED: "Completed",
    BookingStatus.CANCELLED: "Cancelled",
    BookingStatus.DECLINED: "Declined",
}

TERMINAL = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.DECLINED})

TRANSITIONS: dict[tuple[BookingStatus, BookingAction], BookingStatus] = {
    (BookingStatus.PENDING_PROVIDER, BookingAction.ACCEPT): BookingStatus.CONFIRMED,
    (BookingStatus.PENDING_PROVIDER, BookingAction.DECLINE): BookingStatus.DECLINED,
    (BookingStatus.PENDING_PROVIDER, BookingAction.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingAction.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingAction.COMPLETE): BookingStatus.COMPLETED,
    (BookingStatus.CONFIRMED, BookingAction.RESCHEDULE): BookingStatus.CONFIRMED,
}

# which role may request which action; ownership is checked separately
ROLE_ACTIONS = {
    "applicant": frozenset({BookingAction.CANCEL, BookingAction.COMPLETE, BookingAction.RESCHEDULE}),
    "provider": frozenset(BookingAction),
    "admin": frozenset({BookingAction.CANCEL, BookingAction.COMPLETE, BookingAction.RESCHEDULE}),
    "system": frozenset({BookingAction.COMPLETE}),
}


class TransitionError(Conflict):
    pass


def status_of(booking) -> BookingStatus:
    return BookingStatus(booking.status)


def is_expired(booking, now: datetime) -> bool:
    if status_of(booking) != BookingStatus.PENDING_PROVIDER:
        return False
    expiry = effective_expiry(booking.expires_at, booking.created_at)
    return expiry is not None and expiry <= as_utc(now)


def _check_guard(booking, action: BookingAction, now: datetime):
    status = status_of(booking)
    now = as_utc(now)

    if action == BookingAction.ACCEPT and is_expired(booking, now):
        raise TransitionError(
            "Booking request has expired; the provider did not respond in time",
            {"expires_at": as_utc(booking.expires_at).isoformat() if booking.expires_at else None},
        )

    if action == BookingAction.CANCEL and status == BookingStatus.CONFIRMED:
        if booking.delivery == Delivery.ASYNC.value:
            deadline = as_utc(booking.turnaround_deadline)
            if deadline is not None and deadline <= now:
                raise TransitionError("Cannot cancel after the turnaround deadline has passed")
        else:
            start = as_utc(booking.scheduled_at)
            if start is None or start <= now:
                raise TransitionError("Cannot cancel a session that has already started")

    if action == BookingAction.RESCHEDULE:
        if booking.delivery != Delivery.LIVE.value:
            raise TransitionError("Only live sessions can be rescheduled")
        start = as_utc(booking.scheduled_at)
        if start is None or start <= now:
            raise TransitionError("Cannot reschedule a session that has already started")


def transition(booking, action: BookingAction, now: datetime) -> BookingStatus:
    """
    Returns the status the booking moves to, or raises TransitionError.
    Does not mutate the booking.
    """
    action = BookingAction(action)
    status = status_of(booking)
    target = TRANSITIONS.get((status, action))
    if target is None:
        raise TransitionError(
            f"Cannot {action.value} booking with status {status.value}",
            {"status": status.value, "action": action.value},
        )
    _check_guard(booking, action, now)
    return target


def can_transition(booking, action: BookingAction, now: datetime) -> bool:
    try:
        transition(booking, action, now)
    except TransitionError:
        return False
    return True


def available_actions(booking, role: str, now: datetime) -> list[str]:
    allowed = ROLE_ACTIONS.get(role, frozenset())
    return [a.value for a in BookingAction if a in allowed and can_transition(booking, a, now)]


def session_end(booking) -> datetime | None:
    start = as_utc(booking.scheduled_at)
    if start is None:
        return None
    return start + timedelta(minutes=booking.duration or DEFAULT_DURATION_MINUTES)


def can_join(booking, now: datetime) -> bool:
    if status_of(booking) != BookingStatus.CONFIRMED or not booking.meeting_url:
        return False
    start = as_utc(booking.scheduled_at)
    if start is None:
        return False
    now = as_utc(now)
    return start - timedelta(minutes=JOIN_EARLY_MINUTES) <= now <= start + timedelta(minutes=JOIN_LATE_MINUTES)


def can_review(booking) -> bool:
    return status_of(booking) == BookingStatus.COMPLETED and not booking.applicant_review_id


def notes_editable(booking) -> bool:
    return status_of(booking) not in (BookingStatus.CANCELLED, BookingStatus.DECLINED)


@dataclass
class BookingView:
    status: str
    status_label: str
    expired: bool
    time_remaining: TimeRemaining | None
    actions: list[str] = field(default_factory=list)
    can_join: bool = False
    can_review: bool = False
    notes_editable: bool = True
    session_ends_at: datetime | None = None


def describe(booking, role: str, now: datetime) -> BookingView:
    status = status_of(booking)

    remaining = None
    if status == BookingStatus.PENDING_PROVIDER:
        expiry = effective_expiry(booking.expires_at, booking.created_at)
        if expiry is not None:
            remaining = time_remaining(expiry, now)

    return BookingView(
        status=status.value,
        status_label=STATUS_LABELS[status],
        expired=is_expired(booking, now),
        time_remaining=remaining,
        actions=available_actions(booking, role, now),
        can_join=can_join(booking, now),
        can_review=can_review(booking),
        notes_editable=notes_editable(booking),
        session_ends_at=session_end(booking),
    )
