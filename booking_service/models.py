from sqlalchemy import CheckConstraint, Column, Integer, String, DateTime, Text, Numeric, JSON
from .db import Base


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_provider','confirmed','completed','cancelled','declined')",
            name="ck_bookings_status",
        ),
        CheckConstraint("status <> 'pending_provider' OR expires_at IS NOT NULL", name="ck_bookings_pending_has_expiry"),
        CheckConstraint("scheduled_at IS NULL OR turnaround_deadline IS NULL", name="ck_bookings_schedule_xor_turnaround"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(String, unique=True, nullable=False, index=True)

    applicant_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=False, index=True)
    service_id = Column(String, nullable=False)

    status = Column(String, nullable=False, index=True)  # pending_provider/confirmed/completed/cancelled/declined
    booking_model = Column(String, nullable=False, default="requires_confirmation")
    delivery = Column(String, nullable=False)  # live/async

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=True)
    turnaround_deadline = Column(DateTime(timezone=True), nullable=True)
    timezone = Column(String, nullable=False)

    price = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    cancellation_policy = Column(String, nullable=False, default="flexible")

    # written once at creation
    applicant_snapshot = Column(JSON, nullable=False, default=dict)
    provider_snapshot = Column(JSON, nullable=False, default=dict)
    service_snapshot = Column(JSON, nullable=False, default=dict)

    intake_data = Column(JSON, nullable=False, default=dict)
    attachments = Column(JSON, nullable=False, default=list)

    session_notes = Column(Text, nullable=True)
    applicant_notes = Column(Text, nullable=True)
    provider_notes = Column(Text, nullable=True)
    meeting_url = Column(String, nullable=True)

    accepted_at = Column(DateTime(timezone=True), nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    cancelled_by = Column(String, nullable=True)
    cancelled_reason = Column(Text, nullable=True)
    declined_reason = Column(Text, nullable=True)
    refund_amount = Column(Numeric(10, 2, asdecimal=False), nullable=True)
    refund_percent = Column(Integer, nullable=True)

    applicant_review_id = Column(String, nullable=True)
