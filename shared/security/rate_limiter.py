import os

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from .jwt_handler import verify_access_token

CHECKOUT_RATE_LIMIT = os.getenv("CHECKOUT_RATE_LIMIT", "10/minute")


def user_id_or_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    Checkouts are limited per authenticated user so a clinic behind one NAT
    does not share a single budget; anonymous callers fall back to their IP.
    """
    auth_header = request.headers.get("Authorization")

    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ")[1]
        payload = verify_access_token(token)
        if payload and "sub" in payload:
            return f"user:{payload['sub']}"

    # Fallback to IP address (handles proxies if X-Forwarded-For is set correctly by Uvicorn)
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=user_id_or_ip,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() in {"1", "true", "yes"},
)
