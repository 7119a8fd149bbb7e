"""
# `storefront/core/security.py` - Role-based access for admin routes

Authentication itself happens in `storefront.core.auth` (Firebase ID token ->
`Principal`). The dependencies here only check the role:

- `get_current_staff`: role `staff` or `admin` (all `/admin/*` routes)
- `require_admin`: role `admin` (staff role management, order hard-delete)

Roles come from the `role` custom claim, set with `set_staff_role.py`.
A user has to sign in again after a role change before the new claim shows
up in their token.
"""
from fastapi import Depends, HTTPException, status

from storefront.core.auth import get_principal
from storefront.schemas.principal import Principal


def get_current_staff(principal: Principal = Depends(get_principal)) -> Principal:
    """
    Dependency to allow access only to staff members (staff or admin).
    """
    if not principal.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required",
        )
    return principal


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """
    Only admin users.
    """
    if principal.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privilege required.",
        )
    return principal
