from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime


class Attachment(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    url: str
    content_type: Optional[str] = None
    size: Optional[int] = None


class CreateBookingRequest(BaseModel):
    provider_id: str
    service_id: str
    price: float
    delivery: str = "live"
    booking_model: str = "requires_confirmation"
    cancellation_policy: str = "flexible"

    scheduled_at: Optional[datetime] = None
    duration: Optional[int] = None
    turnaround_deadline: Optional[datetime] = None
    timezone: Optional[str] = None

    applicant_snapshot: Dict[str, Any] = Field(default_factory=dict)
    provider_snapshot: Dict[str, Any] = Field(default_factory=dict)
    service_snapshot: Dict[str, Any] = Field(default_factory=dict)

    intake_data: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[Attachment] = Field(default_factory=list)
    applicant_notes: Optional[str] = None


class AcceptBookingRequest(BaseModel):
    scheduled_at: Optional[datetime] = None
    meeting_url: Optional[str] = None
    provider_notes: Optional[str] = None


class RescheduleBookingRequest(BaseModel):
    scheduled_at: Optional[datetime] = None
    reason: Optional[str] = None


class DeclineBookingRequest(BaseModel):
    reason: Optional[str] = None


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = None


class SessionNotesRequest(BaseModel):
    session_notes: str


class TimeRemainingResponse(BaseModel):
    expired: bool
    hours: int
    minutes: int
    expires_at: Optional[datetime] = None


class BookingViewResponse(BaseModel):
    status: str
    status_label: str
    expired: bool
    time_remaining: Optional[TimeRemainingResponse] = None
    actions: List[str]
    can_join: bool
    can_review: bool
    notes_editable: bool
    session_ends_at: Optional[datetime] = None


class RefundResponse(BaseModel):
    amount: float
    percent: int
    reason: str


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: str
    status: str
    booking_model: str
    delivery: str

    applicant_id: str
    provider_id: str
    service_id: str

    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    duration: Optional[int] = None
    turnaround_deadline: Optional[datetime] = None
    timezone: str

    price: float
    cancellation_policy: str

    applicant_snapshot: Dict[str, Any]
    provider_snapshot: Dict[str, Any]
    service_snapshot: Dict[str, Any]
    intake_data: Dict[str, Any]
    attachments: List[Dict[str, Any]]

    session_notes: Optional[str] = None
    applicant_notes: Optional[str] = None
    provider_notes: Optional[str] = None
    meeting_url: Optional[str] = None

    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_reason: Optional[str] = None
    declined_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_percent: Optional[int] = None
    applicant_review_id: Optional[str] = None

    view: Optional[BookingViewResponse] = None


class ActionResponse(BaseModel):
    booking: BookingResponse
    refund: Optional[RefundResponse] = None


class UpcomingBookingsResponse(BaseModel):
    bookings: List[BookingResponse]
    next_booking: Optional[BookingResponse] = None
    has_soon_booking: bool


class PendingRequestsResponse(BaseModel):
    requests: List[BookingResponse]
    urgent_count: int
