import logging

import httpx

from . import config
from .breaker import CircuitBreaker, CircuitBreakerOpen
from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

cb_meetings = CircuitBreaker(
    "meeting-service",
    failure_threshold=config.MEETING_BREAKER_FAILURES,
    reset_timeout_seconds=config.MEETING_BREAKER_RESET_SECONDS,
)


def meetings_enabled() -> bool:
    return bool(config.MEETING_SERVICE_URL)


async def create_meeting(booking, scheduled_at, request_id: str | None = None) -> str:
    """
    Ask the meeting service for a join link for a confirmed live session.
    Raises UpstreamUnavailable on breaker-open, timeout or upstream error.
    """
    try:
        await cb_meetings.allow_request()
    except CircuitBreakerOpen as e:
        raise UpstreamUnavailable(str(e))

    headers = {"X-Request-Id": request_id} if request_id else {}
    payload = {
        "booking_id": booking.booking_id,
        "start_time": scheduled_at.isoformat(),
        "duration_minutes": booking.duration,
        "timezone": booking.timezone,
        "attendee": booking.applicant_snapshot or {},
        "host": booking.provider_snapshot or {},
    }

    try:
        async with httpx.AsyncClient(timeout=config.MEETING_TIMEOUT_SECONDS) as client:
            resp = await client.post(f"{config.MEETING_SERVICE_URL}/meetings", json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
    except httpx.TimeoutException:
        await cb_meetings.record_failure()
        raise UpstreamUnavailable("Timeout calling meeting service")
    except httpx.HTTPStatusError as e:
        await cb_meetings.record_failure()
        logger.warning(f"meeting service returned {e.response.status_code} for {booking.booking_id}")
        raise UpstreamUnavailable(
            "Meeting service rejected the request",
            {"upstream_status": e.response.status_code},
        )
    except (httpx.HTTPError, ValueError) as e:
        await cb_meetings.record_failure()
        raise UpstreamUnavailable(f"Bad response from meeting service: {e}")

    await cb_meetings.record_success()

    meeting_url = data.get("meeting_url")
    if not meeting_url:
        raise UpstreamUnavailable("Meeting service response had no meeting_url")
    return meeting_url


async def release_meeting(booking_id: str, request_id: str | None = None) -> bool:
    """
    Best-effort removal of a meeting whose booking was not confirmed after all.
    """
    headers = {"X-Request-Id": request_id} if request_id else {}
    try:
        async with httpx.AsyncClient(timeout=config.MEETING_TIMEOUT_SECONDS) as client:
            resp = await client.delete(f"{config.MEETING_SERVICE_URL}/meetings/{booking_id}", headers=headers)
            resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"could not release meeting for {booking_id}: {e}")
        return False
    return True
