import json
import logging

import aio_pika

from . import actions
from .db import SessionLocal
from .events import EXCHANGE_NAME, REVIEW_SUBMITTED, SESSION_ENDED
from .idempotency import is_processed, mark_processed
from .security import SYSTEM_ACTOR

logger = logging.getLogger(__name__)

QUEUE_NAME = "booking_service_session_events"
ROUTING_KEYS = [SESSION_ENDED, REVIEW_SUBMITTED]


async def dispatch(event_type: str, data: dict, session_factory=SessionLocal):
    booking_id = data.get("booking_id")
    if not booking_id:
        return None

    async with session_factory() as db:
        if event_type == SESSION_ENDED:
            result = await actions.complete_booking(db, booking_id, SYSTEM_ACTOR)
        elif event_type == REVIEW_SUBMITTED:
            review_id = data.get("review_id")
            if not review_id:
                return None
            result = await actions.record_review(db, booking_id, review_id)
        else:
            return None

    if not result.ok:
        logger.warning(f"{event_type} for {booking_id} not applied: {result.error.kind}: {result.error.message}")
    return result


async def handle_message(message: aio_pika.IncomingMessage):
    async with message.process(requeue=True):
        try:
            payload = json.loads(message.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.warning("dropping undecodable message")
            return

        event_id = payload.get("event_id")
        event_type = payload.get("event_type")
        data = payload.get("data") or {}

        if not event_id or event_type not in ROUTING_KEYS:
            return

        if await is_processed(event_id):
            return

        # a raise here requeues the message; it is marked only once handled
        await dispatch(event_type, data)
        await mark_processed(event_id)


async def start_consumer(rabbit_url: str):
    conn = await aio_pika.connect_robust(rabbit_url)
    channel = await conn.channel()
    await channel.set_qos(prefetch_count=50)

    exchange = await channel.declare_exchange(
        EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC, durable=True
    )

    queue = await channel.declare_queue(QUEUE_NAME, durable=True)
    for rk in ROUTING_KEYS:
        await queue.bind(exchange, routing_key=rk)

    await queue.consume(handle_message)
    logger.info("session event consumer started")
    return conn
