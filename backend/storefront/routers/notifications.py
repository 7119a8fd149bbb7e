"""
Notifications router: durable notification records (REST) and the real-time
channel (WebSocket).

WebSocket protocol:
  client -> {"type": "auth", "token": "<Firebase ID token>"}   (first message)
  server -> {"type": "auth_success", "user_id": ...} | {"type": "auth_error", "message": ...}
  server -> {"type": "notification", "data": {...}}            (until closed)
  client -> {"type": "ping"}  server -> {"type": "pong"}
"""
import json
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from storefront.config import get_db
from storefront.core.auth import TokenVerifier, get_principal, get_token_verifier, verify_in_executor
from storefront.repositories import notifications as notifications_repo
from storefront.schemas.notification import NotificationOut
from storefront.schemas.principal import Principal

logger = logging.getLogger("storefront.notifications")

router = APIRouter(prefix="/notifications", tags=["Notifications"])
ws_router = APIRouter(tags=["Notifications"])


@router.get("", response_model=List[NotificationOut])
def list_notifications(principal: Principal = Depends(get_principal), db=Depends(get_db)):
    """Unread notifications of the caller, newest first."""
    return notifications_repo.list_unread(db, principal.uid)


@router.post("/{notification_id}/read")
def mark_notification_read(notification_id: str, principal: Principal = Depends(get_principal), db=Depends(get_db)):
    item = notifications_repo.get(db, notification_id)
    if not item or item.get("user_id") != principal.uid:
        raise HTTPException(status_code=404, detail="Notification not found")
    notifications_repo.mark_read(db, notification_id)
    return {"success": True}


@router.post("/mark-all-read")
def mark_all_notifications_read(principal: Principal = Depends(get_principal), db=Depends(get_db)):
    changed = notifications_repo.mark_all_read(db, principal.uid)
    return {"success": True, "updated": changed}


async def _reject(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"type": "auth_error", "message": message})
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)


@ws_router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket, verify: TokenVerifier = Depends(get_token_verifier)):
    await websocket.accept()
    registry = websocket.app.state.connections

    try:
        first = await websocket.receive_json()
    except WebSocketDisconnect:
        return
    except ValueError:
        await _reject(websocket, "Invalid message")
        return

    if not isinstance(first, dict) or first.get("type") != "auth" or not first.get("token"):
        await _reject(websocket, "Authentication required")
        return
    try:
        principal = await verify_in_executor(verify, first["token"])
    except HTTPException as e:
        logger.info("Notification socket auth failed: %s", e.detail)
        await _reject(websocket, "Invalid token")
        return

    registry.add(principal.uid, websocket)
    logger.info("Notification socket opened for %s (%d open)", principal.uid, len(registry))
    try:
        await websocket.send_json({"type": "auth_success", "user_id": principal.uid})
        while True:
            text = await websocket.receive_text()
            try:
                msg = json.loads(text)
            except ValueError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        registry.remove(websocket)
        logger.info("Notification socket closed for %s", principal.uid)
