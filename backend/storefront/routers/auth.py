"""
# storefront/routers/auth.py - Account endpoints

Sign-in itself happens in the browser with the Firebase client SDK; the API
only receives ID tokens.

### POST /auth/reset-password
Generates a Firebase password-reset link and sends it with our own email
template (so it shows up in the email log). Always answers with the same
generic message, whether or not the account exists.

### GET /auth/me
The authenticated principal (uid, role, email).

### POST /auth/logout
Revokes the user's refresh tokens; ID tokens are verified with
`check_revoked=True`, so existing sessions end as well.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from firebase_admin import auth as firebase_auth
from firebase_admin.exceptions import FirebaseError

from storefront.config import init_firebase, settings
from storefront.core.auth import get_principal
from storefront.core.deps import get_mailer
from storefront.schemas.principal import Principal
from storefront.services.mailer import Mailer

logger = logging.getLogger("storefront.auth")

router = APIRouter(prefix="/auth", tags=["Auth"])

RESET_MESSAGE = "If this email is registered, a password reset email has been sent."


def generate_reset_link(email: str) -> str:
    init_firebase()
    action = firebase_auth.ActionCodeSettings(url=f"{settings.store_url}/login")
    return firebase_auth.generate_password_reset_link(email, action)


@router.post("/reset-password", summary="Request Password Reset")
async def request_password_reset(
    email: str = Query(..., min_length=5, max_length=254, description="User email"),
    mailer: Mailer = Depends(get_mailer),
):
    try:
        link = generate_reset_link(email)
    except firebase_auth.UserNotFoundError:
        # no user enumeration
        return {"message": RESET_MESSAGE}
    except (FirebaseError, ValueError) as e:
        logger.error("Password reset link for %s failed: %s", email, e)
        raise HTTPException(status_code=502, detail="Password reset service error")

    result = await mailer.send_password_reset(email, link)
    if not result.success:
        logger.error("Password reset email to %s failed: %s", email, result.error)
    return {"message": RESET_MESSAGE}


@router.get("/me", response_model=Principal)
def me(principal: Principal = Depends(get_principal)):
    return principal


@router.post("/logout", summary="Revoke refresh tokens")
def logout(principal: Principal = Depends(get_principal)):
    init_firebase()
    try:
        firebase_auth.revoke_refresh_tokens(principal.uid)
    except firebase_auth.UserNotFoundError:
        logger.info("Logout for deleted user %s", principal.uid)
    return {"detail": "Logged out"}
