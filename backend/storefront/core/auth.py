# storefront/core/auth.py
import asyncio
from typing import Callable, Optional

from fastapi import HTTPException, Request, status
from firebase_admin import auth as fb_auth

from storefront.config import init_firebase
from storefront.schemas.principal import Principal

TokenVerifier = Callable[[str], Principal]


def _extract_bearer_token(request: Request) -> Optional[str]:
    """
    Reads the token from `Authorization: Bearer <id_token>`.
    Returns None when the header is missing or malformed.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_id_token(id_token: str) -> dict:
    """
    Firebase ID token verification (revocation checked, so logout takes effect).
    Invalid, revoked or expired tokens -> 401.
    """
    init_firebase()
    try:
        return fb_auth.verify_id_token(id_token, check_revoked=True)
    except fb_auth.ExpiredIdTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except fb_auth.RevokedIdTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session revoked")
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid Firebase ID token: {exc}",
        )


def _token_to_principal(decoded: dict) -> Principal:
    """
    Builds the Principal from the token claims.
    - custom claim role=staff|admin -> that role
    - legacy custom claim admin=True -> 'admin'
    - everyone else -> 'customer'
    """
    uid = decoded.get("uid") or decoded.get("user_id")
    if not uid:
        raise HTTPException(status_code=401, detail="Token missing uid.")

    role = decoded.get("role")
    if role not in ("staff", "admin"):
        role = "admin" if decoded.get("admin") is True else "customer"

    return Principal(
        uid=uid,
        role=role,
        email=decoded.get("email"),
        display_name=decoded.get("name"),
    )


def verify_token(id_token: str) -> Principal:
    """ID token -> Principal; raises HTTPException(401) when invalid."""
    return _token_to_principal(_decode_id_token(id_token))


async def verify_in_executor(verify: TokenVerifier, id_token: str) -> Principal:
    """Runs the blocking Firebase verification in a worker thread."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, verify, id_token)


# --------- FastAPI Dependencies --------- #

def get_token_verifier() -> TokenVerifier:
    """
    Token verifier for channels without headers (the notification WebSocket
    authenticates with its first message).
    """
    return verify_token


async def get_principal(request: Request) -> Principal:
    """
    Required token: verified and returned as a Principal (any role).
    """
    token = _extract_bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await verify_in_executor(verify_token, token)
