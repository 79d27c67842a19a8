"""
Booking action handlers.

Every handler returns an ActionResult instead of raising for domain failures
(validation, not found, conflict, forbidden, upstream unavailable). The state
change is written with a conditional UPDATE on the expected status so two
concurrent writers cannot both win. Domain events are published after commit.
"""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import events
from .config import DEFAULT_DURATION_MINUTES, DEFAULT_TIMEZONE, DEFAULT_TURNAROUND_HOURS
from .errors import ActionResult, BookingError, Conflict, Forbidden, NotFound, ValidationFailed
from .lifecycle import (
    ROLE_ACTIONS,
    BookingAction,
    BookingModel,
    BookingStatus,
    Delivery,
    notes_editable,
    status_of,
    transition,
)
from .meetings import create_meeting, meetings_enabled, release_meeting
from .models import Booking
from .policies import POLICIES, Refund, calculate_refund, full_refund
from .publisher import publisher
from .rbac import require_relation
from .schemas import AcceptBookingRequest, CreateBookingRequest, RescheduleBookingRequest
from .timer import as_utc, response_deadline, utcnow

logger = logging.getLogger(__name__)


def validate_new_booking(data: CreateBookingRequest, now: datetime):
    errors = {}

    if not (data.provider_id or "").strip():
        errors["provider_id"] = "Provider is required"
    if not (data.service_id or "").strip():
        errors["service_id"] = "Service is required"
    if data.price is None or data.price <= 0:
        errors["price"] = "Valid price is required"

    if data.delivery not in {d.value for d in Delivery}:
        errors["delivery"] = "Delivery must be live or async"
    if data.booking_model not in {m.value for m in BookingModel}:
        errors["booking_model"] = "Booking model must be instant or requires_confirmation"
    if data.cancellation_policy not in POLICIES:
        errors["cancellation_policy"] = f"Must be one of {sorted(POLICIES)}"

    if data.delivery == Delivery.LIVE.value:
        if data.turnaround_deadline is not None:
            errors["turnaround_deadline"] = "Live sessions are scheduled, not given a turnaround deadline"
        if data.scheduled_at is not None and as_utc(data.scheduled_at) <= now:
            errors["scheduled_at"] = "Cannot book in the past"
        if data.duration is not None and data.duration <= 0:
            errors["duration"] = "Duration must be positive"
        if data.booking_model == BookingModel.INSTANT.value and data.scheduled_at is None:
            errors["scheduled_at"] = "Scheduled time is required for instant booking"
    elif data.delivery == Delivery.ASYNC.value:
        if data.scheduled_at is not None:
            errors["scheduled_at"] = "Async services are not scheduled"
        if data.duration is not None:
            errors["duration"] = "Async services have no session duration"

    if errors:
        raise ValidationFailed("Invalid booking data", errors)


def turnaround_hours(booking) -> int:
    raw = (booking.service_snapshot or {}).get("turnaround_hours")
    try:
        hours = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_TURNAROUND_HOURS
    return hours if hours > 0 else DEFAULT_TURNAROUND_HOURS


async def load_booking(db: AsyncSession, booking_id: str) -> Booking:
    res = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
    booking = res.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found", {"booking_id": booking_id})
    return booking


async def _conditional_update(db: AsyncSession, booking: Booking, expected: BookingStatus, values: dict):
    # rollback expires the instance, so keep the id in hand
    booking_id = booking.booking_id
    stmt = (
        update(Booking)
        .where(Booking.booking_id == booking_id, Booking.status == expected.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    if res.rowcount != 1:
        await db.rollback()
        raise Conflict(
            "Booking was changed by someone else; reload and try again",
            {"booking_id": booking_id, "expected_status": expected.value},
        )
    await db.commit()
    await db.refresh(booking)


async def _transition(db, booking_id, actor, action: BookingAction, now, build_values):
    booking = await load_booking(db, booking_id)
    role = require_relation(booking, actor)
    if action not in ROLE_ACTIONS.get(role, ()):
        raise Forbidden(f"A {role} cannot {action.value} this booking", {"role": role})

    current = status_of(booking)
    target = transition(booking, action, now)

    values = await build_values(booking, role)
    values["status"] = target.value
    values["updated_at"] = now

    await _conditional_update(db, booking, current, values)
    logger.info(f"booking {booking.booking_id}: {current.value} -> {target.value} ({action.value} by {role} {actor.sub})")
    return booking, role


def _failure(action: str, booking_id: str | None, e: BookingError) -> ActionResult:
    logger.info(f"{action} {booking_id or ''} rejected: {e.kind}: {e.message}")
    return ActionResult.failure(e)


async def create_booking(db: AsyncSession, data: CreateBookingRequest, actor, now: datetime | None = None,
                         request_id: str | None = None) -> ActionResult:
    now = now or utcnow()
    try:
        validate_new_booking(data, now)

        delivery = Delivery(data.delivery)
        instant = data.booking_model == BookingModel.INSTANT.value

        booking = Booking(
            booking_id=str(uuid.uuid4()),
            applicant_id=actor.sub,
            provider_id=data.provider_id,
            service_id=data.service_id,
            booking_model=data.booking_model,
            delivery=delivery.value,
            created_at=now,
            updated_at=now,
            scheduled_at=as_utc(data.scheduled_at),
            duration=(data.duration or DEFAULT_DURATION_MINUTES) if delivery == Delivery.LIVE else None,
            timezone=data.timezone or DEFAULT_TIMEZONE,
            price=data.price,
            cancellation_policy=data.cancellation_policy,
            applicant_snapshot=dict(data.applicant_snapshot),
            provider_snapshot=dict(data.provider_snapshot),
            service_snapshot=dict(data.service_snapshot),
            intake_data=dict(data.intake_data),
            attachments=[a.model_dump(exclude_none=True) for a in data.attachments],
            applicant_notes=data.applicant_notes,
        )

        if instant:
            booking.status = BookingStatus.CONFIRMED.value
            booking.accepted_at = now
            if delivery == Delivery.ASYNC:
                booking.turnaround_deadline = now + timedelta(hours=turnaround_hours(booking))
            elif meetings_enabled():
                booking.meeting_url = await create_meeting(booking, as_utc(data.scheduled_at), request_id)
        else:
            booking.status = BookingStatus.PENDING_PROVIDER.value
            booking.expires_at = response_deadline(now)
    except BookingError as e:
        return _failure("create", None, e)

    db.add(booking)
    await db.commit()
    await db.refresh(booking)

    logger.info(f"booking {booking.booking_id} created as {booking.status} for provider {booking.provider_id}")
    await publisher.emit(events.BOOKING_REQUESTED, events.booking_event_data(booking))
    return ActionResult.success(booking)


async def accept_booking(db: AsyncSession, booking_id: str, actor, data: AcceptBookingRequest | None = None,
                         now: datetime | None = None, request_id: str | None = None) -> ActionResult:
    now = now or utcnow()
    data = data or AcceptBookingRequest()
    created_meeting = False

    async def build(booking, role):
        nonlocal created_meeting
        values = {"accepted_at": now}
        if data.provider_notes is not None:
            values["provider_notes"] = data.provider_notes

        if booking.delivery == Delivery.ASYNC.value:
            values["turnaround_deadline"] = now + timedelta(hours=turnaround_hours(booking))
            return values

        scheduled_at = as_utc(data.scheduled_at or booking.scheduled_at)
        if scheduled_at is None:
            raise ValidationFailed("A session time is required to accept", {"scheduled_at": "required"})
        if scheduled_at <= now:
            raise ValidationFailed("Session time must be in the future", {"scheduled_at": "in the past"})
        values["scheduled_at"] = scheduled_at
        values["duration"] = booking.duration or DEFAULT_DURATION_MINUTES

        meeting_url = data.meeting_url or booking.meeting_url
        if not meeting_url and meetings_enabled():
            meeting_url = await create_meeting(booking, scheduled_at, request_id)
            created_meeting = True
        values["meeting_url"] = meeting_url
        return values

    try:
        booking, _ = await _transition(db, booking_id, actor, BookingAction.ACCEPT, now, build)
    except BookingError as e:
        if created_meeting:
            await release_meeting(booking_id, request_id)
        return _failure("accept", booking_id, e)
    except Exception:
        if created_meeting:
            await release_meeting(booking_id, request_id)
        raise

    await publisher.emit(events.BOOKING_ACCEPTED, events.booking_event_data(booking))
    return ActionResult.success(booking)


async def decline_booking(db: AsyncSession, booking_id: str, actor, reason: str | None = None,
                          now: datetime | None = None) -> ActionResult:
    now = now or utcnow()
    refund = None

    async def build(booking, role):
        nonlocal refund
        refund = full_refund(booking.price, "Declined by provider - full refund")
        return {
            "declined_at": now,
            "declined_reason": reason,
            "refund_amount": refund.amount,
            "refund_percent": refund.percent,
        }

    try:
        booking, _ = await _transition(db, booking_id, actor, BookingAction.DECLINE, now, build)
    except BookingError as e:
        return _failure("decline", booking_id, e)

    await publisher.emit(events.BOOKING_DECLINED, events.booking_event_data(booking, reason=reason))
    return ActionResult.success(booking, refund=refund)


def refund_for_cancel(booking, role: str, now: datetime) -> Refund:
    if role == "provider":
        return full_refund(booking.price, "Cancelled by provider - full refund")
    if status_of(booking) == BookingStatus.PENDING_PROVIDER:
        return full_refund(booking.price, "Cancelled before provider confirmation - full refund")
    return calculate_refund(booking.price, booking.scheduled_at, booking.cancellation_policy, now)


async def cancel_booking(db: AsyncSession, booking_id: str, actor, reason: str | None = None,
                         now: datetime | None = None) -> ActionResult:
    now = now or utcnow()
    refund = None

    async def build(booking, role):
        nonlocal refund
        refund = refund_for_cancel(booking, role, now)
        return {
            "cancelled_at": now,
            "cancelled_by": role,
            "cancelled_reason": reason,
            "refund_amount": refund.amount,
            "refund_percent": refund.percent,
        }

    try:
        booking, role = await _transition(db, booking_id, actor, BookingAction.CANCEL, now, build)
    except BookingError as e:
        return _failure("cancel", booking_id, e)

    await publisher.emit(
        events.BOOKING_CANCELLED,
        events.booking_event_data(booking, cancelled_by=role, refund_amount=refund.amount, refund_percent=refund.percent),
    )
    return ActionResult.success(booking, refund=refund)


async def complete_booking(db: AsyncSession, booking_id: str, actor, now: datetime | None = None) -> ActionResult:
    now = now or utcnow()

    async def build(booking, role):
        return {"completed_at": now}

    try:
        booking, role = await _transition(db, booking_id, actor, BookingAction.COMPLETE, now, build)
    except BookingError as e:
        return _failure("complete", booking_id, e)

    await publisher.emit(events.BOOKING_COMPLETED, events.booking_event_data(booking, completed_by=role))
    return ActionResult.success(booking)


async def reschedule_booking(db: AsyncSession, booking_id: str, actor, data: RescheduleBookingRequest,
                             now: datetime | None = None) -> ActionResult:
    now = now or utcnow()
    previous = None

    async def build(booking, role):
        nonlocal previous
        new_time = as_utc(data.scheduled_at)
        if new_time is None:
            raise ValidationFailed("A new session time is required", {"scheduled_at": "required"})
        if new_time <= now:
            raise ValidationFailed("Cannot reschedule into the past", {"scheduled_at": "in the past"})
        previous = as_utc(booking.scheduled_at)
        return {"scheduled_at": new_time}

    try:
        booking, role = await _transition(db, booking_id, actor, BookingAction.RESCHEDULE, now, build)
    except BookingError as e:
        return _failure("reschedule", booking_id, e)

    await publisher.emit(
        events.BOOKING_RESCHEDULED,
        events.booking_event_data(
            booking,
            rescheduled_by=role,
            previous_scheduled_at=previous.isoformat() if previous else None,
            reason=data.reason,
        ),
    )
    return ActionResult.success(booking)


async def update_session_notes(db: AsyncSession, booking_id: str, actor, notes: str,
                               now: datetime | None = None) -> ActionResult:
    now = now or utcnow()
    try:
        booking = await load_booking(db, booking_id)
        role = require_relation(booking, actor)
        if role == "system":
            raise Forbidden("System actors cannot edit session notes")
        if not notes_editable(booking):
            raise Conflict(f"Session notes are read-only for {booking.status} bookings")
    except BookingError as e:
        return _failure("notes", booking_id, e)

    booking.session_notes = notes
    booking.updated_at = now
    await db.commit()
    await db.refresh(booking)
    return ActionResult.success(booking)


async def record_review(db: AsyncSession, booking_id: str, review_id: str, now: datetime | None = None) -> ActionResult:
    now = now or utcnow()
    try:
        booking = await load_booking(db, booking_id)
        if status_of(booking) != BookingStatus.COMPLETED:
            raise Conflict("Only completed bookings can be reviewed", {"status": booking.status})
        if booking.applicant_review_id:
            raise Conflict("Booking already has a review", {"review_id": booking.applicant_review_id})
    except BookingError as e:
        return _failure("review", booking_id, e)

    booking.applicant_review_id = review_id
    booking.updated_at = now
    await db.commit()
    await db.refresh(booking)
    return ActionResult.success(booking)
