import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

SECRET_KEY = os.getenv("JWT_SECRET_KEY")
if not SECRET_KEY:
    raise ValueError("FATAL ERROR: JWT_SECRET_KEY is not set in the environment!")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
ISSUER = os.getenv("JWT_ISSUER", "phlebcare")


def create_access_token(claims: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Signs `claims` with issue time, issuer and a UTC expiry."""
    issued_at = datetime.now(timezone.utc)
    payload = dict(claims)
    payload.update(
        iat=issued_at,
        iss=ISSUER,
        exp=issued_at + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
    )
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_access_token(token: str) -> Optional[dict]:
    """Claims of a valid token from our issuer; None if invalid or expired."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], issuer=ISSUER)
    except JWTError:
        return None


def create_session_token(
    user_id: int,
    role: str,
    email: Optional[str] = None,
    practitioner_id: Optional[int] = None,
    pleb_id: Optional[int] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issues a token carrying the identity and role claims the services authorize on."""
    claims = {"sub": str(user_id), "role": role}
    if email:
        claims["email"] = email
    if practitioner_id is not None:
        claims["practitioner_id"] = practitioner_id
    if pleb_id is not None:
        claims["pleb_id"] = pleb_id
    return create_access_token(claims, expires_delta=expires_delta)
