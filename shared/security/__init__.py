from .jwt_handler import create_access_token, create_session_token, verify_access_token
from .dependencies import SessionUser, UserRole, get_current_user, get_optional_user
from .permissions import can_assign_jobs, can_manage_pleb
from .rate_limiter import limiter, user_id_or_ip

__all__ = [
    "create_access_token",
    "create_session_token",
    "verify_access_token",
    "SessionUser",
    "UserRole",
    "get_current_user",
    "get_optional_user",
    "can_assign_jobs",
    "can_manage_pleb",
    "limiter",
    "user_id_or_ip"
]
