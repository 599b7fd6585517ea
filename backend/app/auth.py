"""Authentication utilities for the leadledger backend.

Tokens are issued by the platform's auth service; this service only verifies
them. The ``sub`` claim is the actor id and ``role`` is one of
``customer``, ``contractor`` or ``admin``. Contractor tokens may carry a
``contractor_id`` claim when the contractor profile id differs from the user id.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings

security = HTTPBearer(auto_error=False)

ROLES = ("customer", "contractor", "admin")


def create_access_token(
    actor_id: str,
    role: str,
    settings: Settings,
    expires_delta: timedelta | None = None,
    contractor_id: str | None = None,
) -> str:
    """Create a JWT access token (used by tooling and tests)."""
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": actor_id,
        "role": role,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": now,
        "type": "access",
    }
    if contractor_id:
        to_encode["contractor_id"] = contractor_id
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


class Actor:
    """The authenticated caller."""

    def __init__(self, id: str, role: str, contractor_id: str | None = None):
        self.id = id
        self.role = role
        self._contractor_id = contractor_id

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def contractor_id(self) -> str:
        return self._contractor_id or self.id


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Actor:
    """Get the authenticated actor from the bearer token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated - provide Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials, settings)
    actor_id = payload.get("sub")
    role = payload.get("role")
    if not actor_id or role not in ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Actor(actor_id, role, contractor_id=payload.get("contractor_id"))


def require_role(*roles: str):
    """Dependency factory restricting an endpoint to the given roles (admins always pass)."""

    async def _check(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if actor.role not in roles and not actor.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(roles)}",
            )
        return actor

    return _check


# Type aliases for dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
CustomerActor = Annotated[Actor, Depends(require_role("customer"))]
ContractorActor = Annotated[Actor, Depends(require_role("contractor"))]
AdminActor = Annotated[Actor, Depends(require_role("admin"))]
