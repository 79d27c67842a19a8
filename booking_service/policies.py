"""
Cancellation policy tiers. A provider picks one; it is copied onto each booking
at creation time.
"""
import math
from dataclasses import dataclass
from datetime import datetime

from .errors import ValidationFailed
from .timer import as_utc

FLEXIBLE = "flexible"
MODERATE = "moderate"
STRICT = "strict"


@dataclass(frozen=True)
class CancellationPolicy:
    name: str
    description: str
    free_cancel_hours: int
    partial_refund_percent: int


POLICIES = {
    FLEXIBLE: CancellationPolicy(
        name="Flexible",
        description="Full refund if cancelled 24+ hours before. 50% refund if cancelled within 24 hours.",
        free_cancel_hours=24,
        partial_refund_percent=50,
    ),
    MODERATE: CancellationPolicy(
        name="Moderate",
        description="Full refund if cancelled 3+ days before. 50% refund if cancelled within 3 days.",
        free_cancel_hours=72,
        partial_refund_percent=50,
    ),
    STRICT: CancellationPolicy(
        name="Strict",
        description="Full refund if cancelled 7+ days before. No refund within 7 days.",
        free_cancel_hours=168,
        partial_refund_percent=0,
    ),
}


@dataclass(frozen=True)
class Refund:
    amount: float
    percent: int
    reason: str


def get_policy(key: str) -> CancellationPolicy:
    policy = POLICIES.get((key or "").strip().lower())
    if policy is None:
        raise ValidationFailed(
            f"Invalid cancellation policy: {key}",
            {"cancellation_policy": f"must be one of {sorted(POLICIES)}"},
        )
    return policy


def full_refund(price: float, reason: str) -> Refund:
    return Refund(amount=round(float(price), 2), percent=100, reason=reason)


def calculate_refund(price: float, scheduled_at: datetime | None, policy_key: str, cancel_time: datetime) -> Refund:
    policy = get_policy(policy_key)

    if scheduled_at is None:
        return full_refund(price, "Cancelled before a session time was set")

    hours_until = (as_utc(scheduled_at) - as_utc(cancel_time)).total_seconds() / 3600

    if hours_until >= policy.free_cancel_hours:
        return full_refund(price, f"Cancelled {math.floor(hours_until / 24)} days before session")

    percent = policy.partial_refund_percent
    amount = round(float(price) * percent / 100, 2)
    window_days = policy.free_cancel_hours // 24
    if percent > 0:
        reason = f"Cancelled within {window_days} days - {percent}% refund per policy"
    else:
        reason = f"Cancelled within {window_days} days - no refund per policy"
    return Refund(amount=amount, percent=percent, reason=reason)
