from enum import Enum
from typing import Optional

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel

from .jwt_handler import verify_access_token

# Bearer <token>; tokens are issued by the identity service, not this cluster
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


class UserRole(str, Enum):
    CUSTOMER = "Customer"
    PRACTITIONER = "Practitioner"
    MODERATOR = "Moderator"
    ADMIN = "Admin"
    PHLEBOTOMIST = "Phlebotomist"


class SessionUser(BaseModel):
    """Identity and role facts carried by the access token."""

    id: int
    role: UserRole
    email: Optional[str] = None
    practitioner_id: Optional[int] = None
    pleb_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def _session_user_from_payload(payload: dict) -> Optional[SessionUser]:
    user_id = payload.get("sub")
    if user_id is None:
        return None
    try:
        return SessionUser(
            id=int(user_id),
            role=payload.get("role", UserRole.CUSTOMER.value),
            email=payload.get("email"),
            practitioner_id=payload.get("practitioner_id"),
            pleb_id=payload.get("pleb_id"),
        )
    except ValueError:
        return None


async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> SessionUser:
    """Dependency to validate JWT and return the session user."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    payload = verify_access_token(token)
    if payload is None:
        raise credentials_exception

    user = _session_user_from_payload(payload)
    if user is None:
        raise credentials_exception

    # Store in request state for downstream use (like rate limiting)
    request.state.user_id = str(user.id)
    return user


async def get_optional_user(
    request: Request, token: str = Depends(oauth2_scheme)
) -> Optional[SessionUser]:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    if not token:
        return None
    payload = verify_access_token(token)
    if payload is None:
        return None
    user = _session_user_from_payload(payload)
    if user is not None:
        request.state.user_id = str(user.id)
    return user
