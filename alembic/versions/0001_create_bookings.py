from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("applicant_id", sa.String(), nullable=False),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("service_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("booking_model", sa.String(), nullable=False, server_default="requires_confirmation"),
        sa.Column("delivery", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("turnaround_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("timezone", sa.String(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("cancellation_policy", sa.String(), nullable=False, server_default="flexible"),
        sa.Column("applicant_snapshot", sa.JSON(), nullable=False),
        sa.Column("provider_snapshot", sa.JSON(), nullable=False),
        sa.Column("service_snapshot", sa.JSON(), nullable=False),
        sa.Column("intake_data", sa.JSON(), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("session_notes", sa.Text(), nullable=True),
        sa.Column("applicant_notes", sa.Text(), nullable=True),
        sa.Column("provider_notes", sa.Text(), nullable=True),
        sa.Column("meeting_url", sa.String(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("declined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("cancelled_reason", sa.Text(), nullable=True),
        sa.Column("declined_reason", sa.Text(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("refund_percent", sa.Integer(), nullable=True),
        sa.Column("applicant_review_id", sa.String(), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending_provider','confirmed','completed','cancelled','declined')",
            name="ck_bookings_status",
        ),
        sa.CheckConstraint(
            "status <> 'pending_provider' OR expires_at IS NOT NULL",
            name="ck_bookings_pending_has_expiry",
        ),
        sa.CheckConstraint(
            "scheduled_at IS NULL OR turnaround_deadline IS NULL",
            name="ck_bookings_schedule_xor_turnaround",
        ),
    )
    op.create_index("ix_bookings_booking_id", "bookings", ["booking_id"], unique=True)
    op.create_index("ix_bookings_applicant_id", "bookings", ["applicant_id"], unique=False)
    op.create_index("ix_bookings_provider_id", "bookings", ["provider_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_expires_at", "bookings", ["expires_at"], unique=False)

def downgrade():
    op.drop_index("ix_bookings_expires_at", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_provider_id", table_name="bookings")
    op.drop_index("ix_bookings_applicant_id", table_name="bookings")
    op.drop_index("ix_bookings_booking_id", table_name="bookings")
    op.drop_table("bookings")
