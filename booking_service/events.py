import json
import uuid
from datetime import datetime, timezone

EXCHANGE_NAME = "domain_events"

BOOKING_REQUESTED = "booking.requested"
BOOKING_ACCEPTED = "booking.accepted"
BOOKING_DECLINED = "booking.declined"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_COMPLETED = "booking.completed"
BOOKING_RESCHEDULED = "booking.rescheduled"
BOOKING_RESPONSE_EXPIRED = "booking.response_expired"
SESSION_ENDED = "session.ended"
REVIEW_SUBMITTED = "review.submitted"


def build_event(event_type: str, data: dict) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def to_json(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=str)


def booking_event_data(booking, **extra) -> dict:
    data = {
        "booking_id": booking.booking_id,
        "status": booking.status,
        "applicant_id": booking.applicant_id,
        "provider_id": booking.provider_id,
        "service_id": booking.service_id,
        "delivery": booking.delivery,
        "scheduled_at": booking.scheduled_at.isoformat() if booking.scheduled_at else None,
        "expires_at": booking.expires_at.isoformat() if booking.expires_at else None,
    }
    data.update(extra)
    return data
