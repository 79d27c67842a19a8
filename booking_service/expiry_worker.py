"""
Announces provider-response deadlines that elapsed without an answer.

The stored status is left at pending_provider: expiry stays a derived
condition and whoever consumes booking.response_expired decides what to do.
"""
import asyncio
import logging

from sqlalchemy import select

from . import events
from .config import EXPIRY_SWEEP_SECONDS, IDEMPOTENCY_TTL_SECONDS
from .db import SessionLocal
from .lifecycle import BookingStatus
from .models import Booking
from .publisher import publisher
from .redis_client import redis_client
from .timer import utcnow

logger = logging.getLogger(__name__)

BATCH_SIZE = 50


def announced_key(booking_id: str) -> str:
    return f"response_expired:{booking_id}"


async def find_expired(db, now, limit: int = BATCH_SIZE) -> list[Booking]:
    res = await db.execute(
        select(Booking)
        .where(
            Booking.status == BookingStatus.PENDING_PROVIDER.value,
            Booking.expires_at <= now,
        )
        .order_by(Booking.expires_at)
        .limit(limit)
    )
    return list(res.scalars().all())


async def sweep_once(session_factory=SessionLocal, now=None) -> int:
    now = now or utcnow()
    announced = 0
    async with session_factory() as db:
        expired = await find_expired(db, now)

    for booking in expired:
        first = await redis_client.set(
            announced_key(booking.booking_id), "1", ex=IDEMPOTENCY_TTL_SECONDS * 7, nx=True
        )
        if not first:
            continue
        if not await publisher.emit(events.BOOKING_RESPONSE_EXPIRED, events.booking_event_data(booking)):
            await redis_client.delete(announced_key(booking.booking_id))
            continue
        announced += 1

    if announced:
        logger.info(f"announced {announced} expired booking request(s)")
    return announced


async def expiry_loop(stop_event: asyncio.Event):
    while not stop_event.is_set():
        try:
            await sweep_once()
        except Exception as e:
            logger.error(f"expiry sweep failed: {e}")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=EXPIRY_SWEEP_SECONDS)
        except asyncio.TimeoutError:
            continue
