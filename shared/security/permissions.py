from typing import Iterable, Optional

from .dependencies import SessionUser, UserRole


def can_assign_jobs(user: Optional[SessionUser], authorized_emails: Iterable[str]) -> bool:
    """Admins may always assign plebs; anyone else only when their email is allow-listed."""
    if user is None:
        return False
    if user.is_admin:
        return True
    email = (user.email or "").strip().lower()
    if not email:
        return False
    return email in set(authorized_emails)


def can_manage_pleb(user: SessionUser, pleb_id: int) -> bool:
    return user.is_admin or (
        user.role == UserRole.PHLEBOTOMIST and user.pleb_id == pleb_id
    )
