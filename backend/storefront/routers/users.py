"""
# `storefront/routers/users.py` - Staff role administration

## Endpoints

### `GET /admin/staff`
Lists the users mirrored in `users/{uid}` whose role is `staff` or `admin`.
These are also the recipients of order notifications.

### `PUT /admin/staff/{uid}/role`
Admin only. Sets the Firebase custom claim `role` on the account and mirrors it
to `users/{uid}`. Setting `customer` removes the user from the staff list.
An admin cannot demote themselves. The user has to sign in again before the
new role is in their ID token.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from firebase_admin import auth as firebase_auth
from firebase_admin.exceptions import FirebaseError

from storefront.config import get_db, init_firebase
from storefront.core.security import get_current_staff, require_admin
from storefront.repositories import users as users_repo
from storefront.schemas.principal import Principal
from storefront.schemas.user import RoleUpdate, StaffOut

logger = logging.getLogger("storefront.staff")

router = APIRouter(prefix="/staff", tags=["Admin: Staff"])


def apply_role_claim(uid: str, role: str) -> firebase_auth.UserRecord:
    """Writes the role claim, keeping any other custom claims; returns the user."""
    init_firebase()
    user = firebase_auth.get_user(uid)
    claims = dict(user.custom_claims or {})
    claims["role"] = role
    claims.pop("admin", None)
    firebase_auth.set_custom_user_claims(uid, claims)
    return user


@router.get("", response_model=List[StaffOut], dependencies=[Depends(get_current_staff)])
def list_staff(db=Depends(get_db)):
    return users_repo.list_staff(db)


@router.put("/{uid}/role", response_model=StaffOut)
def set_staff_role(
    uid: str,
    body: RoleUpdate,
    principal: Principal = Depends(require_admin),
    db=Depends(get_db),
):
    if uid == principal.uid and body.role != "admin":
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")

    try:
        user = apply_role_claim(uid, body.role)
    except firebase_auth.UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except FirebaseError as e:
        logger.error("Setting role for %s failed: %s", uid, e)
        raise HTTPException(status_code=502, detail="Could not update the user's role")

    record = users_repo.set_role(db, uid, body.role, email=user.email, name=user.display_name)
    logger.info("Role of %s set to %s by %s", uid, body.role, principal.email or principal.uid)
    return record
