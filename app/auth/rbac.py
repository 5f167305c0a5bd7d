from typing import Optional

from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole


FINANCE_ROLES = (UserRole.SUPER_ADMIN.value, UserRole.ADMIN.value)


def require_roles(*roles: str):
    """
    Dependency factory to restrict an endpoint to the given roles.

    Example:
        Depends(require_roles("ADMIN", "SUPER_ADMIN"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker


def ensure_student_scope(current_user: CurrentUser, student_id: Optional[str]) -> None:
    """Students can only see their own fee records."""
    if current_user.role in FINANCE_ROLES:
        return
    if current_user.role != UserRole.STUDENT.value or not current_user.student_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    if student_id != current_user.student_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. You can only view your own fee records.",
        )
