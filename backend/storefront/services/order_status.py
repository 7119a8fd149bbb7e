# storefront/services/order_status.py
"""
Admin-driven order status changes.

Every change is validated (transition graph, tracking number, payment
reference) before the single Firestore write; emails and staff notifications
follow best-effort.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from storefront.config import Settings, settings as default_settings
from storefront.repositories import orders as orders_repo
from storefront.schemas.order import OrderState
from storefront.services.lifecycle import (
    OrderNotFound,
    build_transition,
    check_admin_transition,
    current_state,
    validate_tracking_number,
)
from storefront.services.orders_helpers import money, tracking_url
from storefront.services.side_effects import best_effort

logger = logging.getLogger("storefront.orders")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatusService:
    def __init__(
        self,
        db,
        mailer,
        notifier,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.mailer = mailer
        self.notifier = notifier
        self.settings = settings
        self.clock = clock

    def _load(self, order_id: str) -> Dict[str, Any]:
        order = orders_repo.get(self.db, order_id)
        if not order:
            raise OrderNotFound(order_id)
        return order

    async def change_status(
        self,
        order_id: str,
        target: OrderState,
        *,
        tracking_number: Optional[str] = None,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Moves the order to `target`. Raises IllegalTransition,
        InvalidTrackingNumber or MissingPaymentReference before anything is written.
        Re-setting the current state is a no-op, except `shipped` with a new
        tracking number (label re-issued).
        """
        order = self._load(order_id)
        current = current_state(order)
        check_admin_transition(current, target)

        existing_tracking = (order.get("shipment") or {}).get("tracking_number")
        if current == target and not (
            target == OrderState.SHIPPED and tracking_number and tracking_number != existing_tracking
        ):
            return order

        url = None
        if target == OrderState.SHIPPED:
            tracking_number = validate_tracking_number(tracking_number or existing_tracking)
            url = tracking_url(self.settings, tracking_number)

        patch = build_transition(
            order,
            target,
            now=self.clock(),
            transaction_id=transaction_id,
            tracking_number=tracking_number,
            tracking_url=url,
            reason=reason,
        )
        if extra:
            patch.update(extra)
        orders_repo.update(self.db, order_id, patch)
        updated = orders_repo.get(self.db, order_id) or {**order, "id": order_id}
        logger.info(
            "Order %s: %s -> %s by %s",
            updated.get("order_number"), current.value, target.value, actor or "admin",
        )

        await self._after_change(updated, target, reason)
        # re-read: the shipped email stamps shipping_notification_sent_at
        return orders_repo.get(self.db, order_id) or updated

    async def ship(
        self,
        order_id: str,
        tracking_number: str,
        *,
        box_size: Optional[str] = None,
        box_cost: Any = None,
        label_url: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Dict[str, Any]:
        tracking = validate_tracking_number(tracking_number)
        extra: Dict[str, Any] = {}
        if box_size is not None:
            extra["shipment.box_size"] = box_size
        if box_cost is not None:
            extra["shipment.box_cost"] = str(money(box_cost))
        if label_url is not None:
            extra["shipment.label_url"] = label_url
        return await self.change_status(
            order_id, OrderState.SHIPPED, tracking_number=tracking, actor=actor, extra=extra,
        )

    async def _after_change(self, order: Dict[str, Any], target: OrderState, reason: Optional[str]) -> None:
        number = order.get("order_number")
        if target == OrderState.SHIPPED:
            result = await best_effort("shipped email", self.mailer.send_shipped(order))
            if result is not None and result.success:
                await best_effort(
                    "shipping notification stamp",
                    self._stamp_shipping_notification(order["id"]),
                )
            await best_effort(
                "shipped notification",
                self.notifier.order_event(
                    order, "order_shipped", f"Order #{number} shipped",
                    tracking_number=(order.get("shipment") or {}).get("tracking_number"),
                ),
            )
            return

        await best_effort("status email", self.mailer.send_state_update(order, target.value, reason))
        await best_effort(
            "status notification",
            self.notifier.order_event(order, "order_updated", f"Order #{number} is now {target.value}"),
        )

    async def _stamp_shipping_notification(self, order_id: str) -> None:
        orders_repo.update(self.db, order_id, {"shipping_notification_sent_at": self.clock()})
