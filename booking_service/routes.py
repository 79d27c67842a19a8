from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from . import actions, listing
from .db import get_db
from .errors import ActionResult, BookingError
from .idempotency import cache_response, get_cached_response
from .lifecycle import BookingStatus, describe
from .rbac import relation_to, require_relation, require_role
from .schemas import (
    AcceptBookingRequest,
    ActionResponse,
    BookingResponse,
    BookingViewResponse,
    CancelBookingRequest,
    CreateBookingRequest,
    DeclineBookingRequest,
    PendingRequestsResponse,
    RefundResponse,
    RescheduleBookingRequest,
    SessionNotesRequest,
    UpcomingBookingsResponse,
)
from .security import Actor, get_actor
from .timer import utcnow

router = APIRouter(tags=["Bookings"])


def _error(e: BookingError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


def to_response(booking, actor: Actor, now) -> BookingResponse:
    role = relation_to(booking, actor) or "admin"
    resp = BookingResponse.model_validate(booking)
    resp.view = BookingViewResponse(**asdict(describe(booking, role, now)))
    return resp


def _action_response(result: ActionResult, actor: Actor) -> ActionResponse:
    if not result.ok:
        raise _error(result.error)
    refund = result.extra.get("refund")
    return ActionResponse(
        booking=to_response(result.booking, actor, utcnow()),
        refund=RefundResponse(amount=refund.amount, percent=refund.percent, reason=refund.reason) if refund else None,
    )


async def _idempotent(actor: Actor, action: str, key: Optional[str], run):
    if key:
        cached = await get_cached_response(actor.sub, action, key)
        if cached is not None:
            return cached
    response = await run()
    if key:
        await cache_response(actor.sub, action, key, response.model_dump(mode="json"))
    return response


@router.post("/bookings", response_model=ActionResponse, status_code=201)
async def create_booking(
    data: CreateBookingRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    require_role(actor, ["applicant", "admin"])

    async def run():
        result = await actions.create_booking(
            db, data, actor, request_id=getattr(request.state, "request_id", None)
        )
        return _action_response(result, actor)

    return await _idempotent(actor, "create", idempotency_key, run)


@router.get("/bookings", response_model=List[BookingResponse])
async def list_bookings(
    role: Optional[str] = None,
    status: Optional[BookingStatus] = None,
    service_type: Optional[str] = None,
    include_completed: bool = False,
    include_cancelled: bool = False,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    if role not in (None, "applicant", "provider"):
        raise HTTPException(status_code=400, detail="role must be applicant or provider")

    status_value = status.value if status else None
    bookings = await listing.fetch_for_actor(db, actor, role=role, status=status_value)
    bookings = listing.apply_filters(
        bookings,
        status=status_value,
        service_type=service_type,
        include_completed=include_completed,
        include_cancelled=include_cancelled,
    )
    now = utcnow()
    return [to_response(b, actor, now) for b in bookings]


@router.get("/bookings/upcoming", response_model=UpcomingBookingsResponse)
async def upcoming_bookings(
    role: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    now = utcnow()
    bookings = await listing.fetch_for_actor(db, actor, role=role, status=BookingStatus.CONFIRMED.value)
    future, has_soon = listing.upcoming(bookings, now)
    items = [to_response(b, actor, now) for b in future]
    return UpcomingBookingsResponse(
        bookings=items,
        next_booking=items[0] if items else None,
        has_soon_booking=has_soon,
    )


@router.get("/bookings/past", response_model=List[BookingResponse])
async def past_bookings(
    role: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    now = utcnow()
    bookings = await listing.fetch_for_actor(db, actor, role=role)
    return [to_response(b, actor, now) for b in listing.past(bookings, now)]


@router.get("/bookings/pending", response_model=PendingRequestsResponse)
async def pending_requests(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    require_role(actor, ["provider"])
    now = utcnow()
    requests = await listing.fetch_for_actor(
        db, actor, role="provider", status=BookingStatus.PENDING_PROVIDER.value
    )
    requests = listing.sort_bookings(requests)
    return PendingRequestsResponse(
        requests=[to_response(r, actor, now) for r in requests],
        urgent_count=listing.urgent_count(requests, now),
    )


@router.get("/bookings/needing-review", response_model=List[BookingResponse])
async def bookings_needing_review(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    now = utcnow()
    bookings = await listing.fetch_for_actor(
        db, actor, role="applicant", status=BookingStatus.COMPLETED.value
    )
    return [to_response(b, actor, now) for b in listing.needing_review(bookings)]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        booking = await actions.load_booking(db, booking_id)
        require_relation(booking, actor)
    except BookingError as e:
        raise _error(e)
    return to_response(booking, actor, utcnow())


@router.post("/bookings/{booking_id}/accept", response_model=ActionResponse)
async def accept_booking(
    booking_id: str,
    request: Request,
    data: Optional[AcceptBookingRequest] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    async def run():
        result = await actions.accept_booking(
            db, booking_id, actor, data, request_id=getattr(request.state, "request_id", None)
        )
        return _action_response(result, actor)

    return await _idempotent(actor, f"accept:{booking_id}", idempotency_key, run)


@router.post("/bookings/{booking_id}/decline", response_model=ActionResponse)
async def decline_booking(
    booking_id: str,
    data: Optional[DeclineBookingRequest] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    reason = data.reason if data else None

    async def run():
        result = await actions.decline_booking(db, booking_id, actor, reason)
        return _action_response(result, actor)

    return await _idempotent(actor, f"decline:{booking_id}", idempotency_key, run)


@router.post("/bookings/{booking_id}/cancel", response_model=ActionResponse)
async def cancel_booking(
    booking_id: str,
    data: Optional[CancelBookingRequest] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    reason = data.reason if data else None

    async def run():
        result = await actions.cancel_booking(db, booking_id, actor, reason)
        return _action_response(result, actor)

    return await _idempotent(actor, f"cancel:{booking_id}", idempotency_key, run)


@router.post("/bookings/{booking_id}/complete", response_model=ActionResponse)
async def complete_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    async def run():
        result = await actions.complete_booking(db, booking_id, actor)
        return _action_response(result, actor)

    return await _idempotent(actor, f"complete:{booking_id}", idempotency_key, run)


@router.post("/bookings/{booking_id}/reschedule", response_model=ActionResponse)
async def reschedule_booking(
    booking_id: str,
    data: Optional[RescheduleBookingRequest] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    async def run():
        result = await actions.reschedule_booking(db, booking_id, actor, data or RescheduleBookingRequest())
        return _action_response(result, actor)

    return await _idempotent(actor, f"reschedule:{booking_id}", idempotency_key, run)


@router.put("/bookings/{booking_id}/notes", response_model=BookingResponse)
async def update_session_notes(
    booking_id: str,
    data: SessionNotesRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await actions.update_session_notes(db, booking_id, actor, data.session_notes)
    if not result.ok:
        raise _error(result.error)
    return to_response(result.booking, actor, utcnow())
