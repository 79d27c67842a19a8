from dataclasses import dataclass

from jose import jwt, JWTError
from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import JWT_SECRET, JWT_ALGORITHM

if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET environment variable is not set")

bearer_scheme = HTTPBearer(auto_error=False)

KNOWN_ROLES = {"applicant", "provider", "admin"}


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller, passed explicitly into every booking action.
    """
    sub: str
    roles: tuple[str, ...]

    def has_role(self, role: str) -> bool:
        return role in self.roles


SYSTEM_ACTOR = Actor(sub="system", roles=("system",))


def actor_from_payload(payload: dict) -> Actor:
    sub = payload.get("sub")
    raw_roles = payload.get("roles")
    if not sub or not isinstance(raw_roles, list):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing sub or roles",
        )
    roles = tuple(r.strip().lower() for r in raw_roles if isinstance(r, str) and r.strip().lower() in KNOWN_ROLES)
    return Actor(sub=str(sub), roles=roles)


def get_actor(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    token = None
    if creds and creds.scheme.lower() == "bearer":
        token = creds.credentials

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
        )

    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    actor = actor_from_payload(payload)
    request.state.user_sub = actor.sub
    request.state.user_roles = list(actor.roles)
    return actor


def issue_token(sub: str, roles: list[str]) -> str:
    """
    Token minting lives in the auth service; this helper exists for local tooling and tests.
    """
    return jwt.encode({"sub": sub, "roles": roles}, JWT_SECRET, algorithm=JWT_ALGORITHM)
