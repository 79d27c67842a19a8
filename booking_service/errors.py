"""
Error taxonomy shared by the action handlers and the HTTP layer.

Action handlers never raise these for expected domain failures; they return
them inside an ``ActionResult`` and the routes translate ``kind`` into a status
code.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

VALIDATION = "validation"
NOT_FOUND = "not_found"
CONFLICT = "conflict"
FORBIDDEN = "forbidden"
NETWORK = "network"

HTTP_STATUS = {
    VALIDATION: 422,
    NOT_FOUND: 404,
    CONFLICT: 409,
    FORBIDDEN: 403,
    NETWORK: 503,
}


class BookingError(Exception):
    kind = CONFLICT

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class ValidationFailed(BookingError):
    kind = VALIDATION


class NotFound(BookingError):
    kind = NOT_FOUND


class Conflict(BookingError):
    kind = CONFLICT


class Forbidden(BookingError):
    kind = FORBIDDEN


class UpstreamUnavailable(BookingError):
    kind = NETWORK


@dataclass
class ActionResult:
    ok: bool
    booking: Optional[Any] = None
    error: Optional[BookingError] = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def success(cls, booking, **extra) -> "ActionResult":
        return cls(ok=True, booking=booking, extra=extra)

    @classmethod
    def failure(cls, error: BookingError) -> "ActionResult":
        return cls(ok=False, error=error)
