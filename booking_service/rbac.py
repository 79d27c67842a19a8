from fastapi import HTTPException, status

from .errors import Forbidden


def require_role(actor, allowed_roles: list[str]):
    if not actor.roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Roles missing in token",
        )

    allowed = {r.lower() for r in allowed_roles}
    if allowed.isdisjoint(actor.roles):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access forbidden for this role",
        )


def relation_to(booking, actor) -> str | None:
    """
    How the actor relates to this booking: provider, applicant, admin or system.
    Party membership wins over the admin role.
    """
    if actor.has_role("system"):
        return "system"
    if actor.sub == booking.provider_id and actor.has_role("provider"):
        return "provider"
    if actor.sub == booking.applicant_id:
        return "applicant"
    if actor.has_role("admin"):
        return "admin"
    return None


def require_relation(booking, actor) -> str:
    role = relation_to(booking, actor)
    if role is None:
        raise Forbidden("Not your booking", {"booking_id": booking.booking_id})
    return role
