import asyncio
import logging

from fastapi import FastAPI

from .config import EXPIRY_SWEEP_ENABLED, LOG_LEVEL, RABBIT_URL
from .consumer import start_consumer
from .expiry_worker import expiry_loop
from .meetings import cb_meetings, meetings_enabled
from .middleware import RequestLoggingMiddleware
from .publisher import publisher
from .routes import router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("booking_service")

app = FastAPI(title="Booking Service")
app.add_middleware(RequestLoggingMiddleware)
app.include_router(router)

_consumer_conn = None
_stop_event = asyncio.Event()
_expiry_task = None


@app.get("/health")
async def health():
    return {"status": "ok", "service": "booking-service", "events_enabled": publisher.enabled}


@app.get("/health/meetings")
async def meetings_health():
    if not meetings_enabled():
        return {"enabled": False}
    return {"enabled": True, "breaker": await cb_meetings.status()}


@app.on_event("startup")
async def startup():
    global _consumer_conn, _expiry_task
    try:
        await publisher.start()
    except Exception as e:
        logger.warning(f"RabbitMQ connect failed at startup; continuing: {e}")

    if RABBIT_URL:
        try:
            _consumer_conn = await start_consumer(RABBIT_URL)
        except Exception as e:
            _consumer_conn = None
            logger.error(f"session consumer failed to start: {e}")

    if EXPIRY_SWEEP_ENABLED:
        _expiry_task = asyncio.create_task(expiry_loop(_stop_event))
        logger.info("expiry sweeper started")


@app.on_event("shutdown")
async def shutdown():
    _stop_event.set()
    if _expiry_task:
        await _expiry_task
    if _consumer_conn and not _consumer_conn.is_closed:
        await _consumer_conn.close()
    await publisher.close()
