# storefront/services/notifications.py
"""
Staff notifications: durable record first, then a best-effort real-time push.

ConnectionRegistry keeps the open WebSocket connections of this process keyed
by user id. It is owned by the FastAPI app (`app.state.connections`) and is
empty after every restart; clients re-authenticate on reconnect. Running more
than one instance needs a shared pub/sub layer in front of `broadcast`.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from storefront.repositories import notifications as notifications_repo
from storefront.repositories import users as users_repo

logger = logging.getLogger("storefront.notifications")


class ConnectionRegistry:
    """user id -> live connections (anything with an async `send_text`)."""

    def __init__(self):
        self._clients: Dict[str, List[Any]] = {}

    def add(self, user_id: str, connection: Any) -> None:
        self._clients.setdefault(user_id, []).append(connection)

    def remove(self, connection: Any) -> Optional[str]:
        for user_id, conns in list(self._clients.items()):
            if connection in conns:
                conns.remove(connection)
                if not conns:
                    del self._clients[user_id]
                return user_id
        return None

    def connections_for(self, user_id: str) -> List[Any]:
        return list(self._clients.get(user_id, []))

    def __len__(self) -> int:
        return sum(len(c) for c in self._clients.values())

    async def broadcast(self, user_id: str, message: Dict[str, Any]) -> int:
        """
        Sends `message` to every connection of `user_id`.
        Returns how many sends succeeded; broken connections are dropped.
        """
        conns = self.connections_for(user_id)
        if not conns:
            return 0
        text = json.dumps(message, default=str)
        delivered = 0
        for conn in conns:
            try:
                await conn.send_text(text)
                delivered += 1
            except Exception as exc:
                logger.warning("Dropping notification connection for %s: %s", user_id, exc)
                self.remove(conn)
        return delivered


class NotificationService:
    def __init__(self, db, registry: ConnectionRegistry):
        self.db = db
        self.registry = registry

    async def create(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        record = notifications_repo.create(self.db, user_id, type, title, message, data)
        try:
            await self.registry.broadcast(user_id, {"type": "notification", "data": record})
        except Exception:
            logger.exception("Real-time push failed for notification %s", record.get("id"))
        return record

    async def notify_staff(
        self,
        type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        One notification per staff member (role staff or admin). A member whose
        record cannot be stored is logged and skipped; the rest still get theirs.
        """
        created = []
        for uid in users_repo.staff_ids(self.db):
            try:
                created.append(await self.create(uid, type, title, message, data))
            except Exception:
                logger.exception("Could not store %s notification for staff member %s", type, uid)
        return created

    async def order_event(self, order: Dict[str, Any], kind: str, message: str, **data) -> List[Dict[str, Any]]:
        titles = {
            "order_new": "New Order Received",
            "order_updated": "Order Updated",
            "order_shipped": "Order Shipped",
            "payment_received": "Payment Received",
            "payment_failed": "Payment Failed",
            "order_refunded": "Order Refunded",
            "order_cancelled": "Order Cancelled",
            "dispute_opened": "PayPal Dispute Opened",
            "dispute_resolved": "PayPal Dispute Resolved",
        }
        payload = {
            "order_id": order.get("id"),
            "order_number": order.get("order_number"),
            "state": order.get("state"),
            **data,
        }
        return await self.notify_staff(kind, titles.get(kind, "Order Updated"), message, payload)
