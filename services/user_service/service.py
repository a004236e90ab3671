from shared.errors import AuthorizationError
from shared.security.dependencies import SessionUser, UserRole

from .models import Customer

STAFF_ROLES = (UserRole.PRACTITIONER, UserRole.MODERATOR, UserRole.ADMIN)


def can_order_for(user: SessionUser, customer: Customer) -> bool:
    """Customers order for themselves, practitioners for their own customers,
    moderators for their practitioner's customers, admins for anyone."""
    if user.is_admin:
        return True
    if user.role == UserRole.CUSTOMER:
        return customer.user_id is not None and customer.user_id == user.id
    if user.role == UserRole.PRACTITIONER:
        return customer.created_by == user.id
    if user.role == UserRole.MODERATOR:
        return user.practitioner_id is not None and customer.created_by == user.practitioner_id
    return False


def ensure_can_order_for(user: SessionUser, customer: Customer) -> None:
    if not can_order_for(user, customer):
        raise AuthorizationError("You are not allowed to place orders for this customer")


def ensure_staff(user: SessionUser, action: str) -> None:
    if user.role not in STAFF_ROLES:
        raise AuthorizationError(f"Only practitioners, moderators and admins can {action}")
