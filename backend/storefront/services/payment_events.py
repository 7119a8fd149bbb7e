# storefront/services/payment_events.py
"""
PayPal webhook processing.

Flow per delivery (signature already verified by the router):
1. Unknown event types are acknowledged and ignored.
2. The event id is claimed in the webhook ledger; a redelivery stops here.
3. The order is located through the correlation id (`custom_id`), then the
   handler for the event type applies the state change.
4. Emails and staff notifications run best-effort after the write.

If step 3 raises, the ledger claim is released so PayPal's redelivery is
processed again. State changes from webhooks are last-write-wins: they are not
checked against the admin transition graph.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, NamedTuple, Optional

from storefront.repositories import orders as orders_repo
from storefront.repositories import webhook_events
from storefront.schemas.order import OrderState
from storefront.schemas.paypal import PayPalEventType, WebhookEvent
from storefront.services.lifecycle import build_transition, current_state, status_fields
from storefront.services.side_effects import best_effort

logger = logging.getLogger("storefront.payments")

E = PayPalEventType

# Every PayPalEventType needs a handler; checked below at import time.
HANDLERS: Dict[PayPalEventType, str] = {
    E.PAYMENT_CAPTURE_COMPLETED: "_on_capture_completed",
    E.CHECKOUT_ORDER_COMPLETED: "_on_capture_completed",
    E.CHECKOUT_ORDER_APPROVED: "_on_order_approved",
    E.PAYMENT_CAPTURE_DENIED: "_on_capture_denied",
    E.PAYMENT_CAPTURE_PENDING: "_on_capture_pending",
    E.PAYMENT_CAPTURE_REFUNDED: "_on_capture_refunded",
    E.CHECKOUT_ORDER_VOIDED: "_on_order_voided",
    E.PAYMENT_AUTHORIZATION_VOIDED: "_on_order_voided",
    E.CUSTOMER_DISPUTE_CREATED: "_on_dispute_created",
    E.CUSTOMER_DISPUTE_RESOLVED: "_on_dispute_resolved",
}

_missing = set(PayPalEventType) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No webhook handler for: {sorted(m.value for m in _missing)}")


class WebhookOutcome(NamedTuple):
    status: str  # processed | ignored | duplicate
    order_id: Optional[str] = None
    detail: str = ""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _amount_differs(paid: str, total: Any) -> bool:
    if total is None:
        return False
    try:
        return Decimal(str(paid)) != Decimal(str(total))
    except InvalidOperation:
        return True


def capture_id(event: WebhookEvent) -> Optional[str]:
    """
    Capture (transaction) id of a completed payment event. On CHECKOUT.ORDER.*
    events `resource.id` is the PayPal order id, so only embedded captures count.
    """
    r = event.resource
    for unit in r.purchase_units:
        if unit.payments:
            for cap in unit.payments.captures:
                if cap.id:
                    return cap.id
    if event.event_type.startswith("CHECKOUT.ORDER."):
        return None
    return r.id


class PaymentEventProcessor:
    def __init__(self, db, mailer, notifier, clock: Callable[[], datetime] = _utcnow):
        self.db = db
        self.mailer = mailer
        self.notifier = notifier
        self.clock = clock

    # ── entry point ──────────────────────────────────────────────────────────

    async def handle(self, event: WebhookEvent) -> WebhookOutcome:
        event_type = PayPalEventType.parse(event.event_type)
        if event_type is None:
            logger.info("Ignoring unhandled PayPal event %s (%s)", event.id, event.event_type)
            return WebhookOutcome("ignored", None, "unhandled event type")

        if not webhook_events.claim(self.db, event.id, event.event_type):
            logger.info("PayPal event %s already received, skipping", event.id)
            return WebhookOutcome("duplicate", None, "event already processed")

        try:
            outcome = await self._dispatch(event_type, event)
        except Exception:
            webhook_events.release(self.db, event.id)
            raise

        webhook_events.finish(self.db, event.id, outcome.status, outcome.order_id)
        return outcome

    async def _dispatch(self, event_type: PayPalEventType, event: WebhookEvent) -> WebhookOutcome:
        order = self.resolve_order(event)
        if order is None:
            logger.warning(
                "PayPal event %s (%s): no order for correlation id %r, dropping",
                event.id, event.event_type, event.resource.custom_id,
            )
            return WebhookOutcome("ignored", None, "order not found")

        handler = getattr(self, HANDLERS[event_type])
        return await handler(event, order)

    def resolve_order(self, event: WebhookEvent) -> Optional[Dict[str, Any]]:
        r = event.resource
        candidates = [r.custom_id]
        candidates += [u.custom_id for u in r.purchase_units]
        candidates += [t.custom for t in r.disputed_transactions]
        for cid in candidates:
            if cid:
                order = orders_repo.get(self.db, cid)
                if order:
                    return order

        for t in r.disputed_transactions:
            if t.seller_transaction_id:
                order = orders_repo.find_by_paypal_transaction(self.db, t.seller_transaction_id)
                if order:
                    return order

        if event.event_type.startswith("CHECKOUT.ORDER.") and r.id:
            return orders_repo.find_by_paypal_order(self.db, r.id)
        return None

    # ── shared transitions ──────────────────────────────────────────────────

    def _apply(self, order: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        orders_repo.update(self.db, order["id"], patch)
        return orders_repo.get(self.db, order["id"]) or order

    async def mark_paid(
        self,
        order: Dict[str, Any],
        transaction_id: str,
        amount: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> WebhookOutcome:
        """
        Moves the order to `processing` (payment `paid`) and sends the payment
        confirmation. An order that is already paid is left alone, whatever the
        transaction id. Also used by the checkout capture endpoint.
        """
        if order.get("payment_status") == "paid":
            if order.get("paypal_transaction_id") != transaction_id:
                logger.warning(
                    "Order %s already paid with transaction %s, ignoring capture %s",
                    order.get("order_number"), order.get("paypal_transaction_id"), transaction_id,
                )
            return WebhookOutcome("ignored", order["id"], "already paid")

        patch = build_transition(order, OrderState.PROCESSING, now=self.clock(), transaction_id=transaction_id)
        if amount is not None:
            patch["paid_amount"] = amount
            if _amount_differs(amount, order.get("total")):
                logger.warning(
                    "Order %s paid %s %s but total is %s",
                    order.get("order_number"), amount, currency, order.get("total"),
                )
        updated = self._apply(order, patch)
        logger.info("Order %s marked as paid (transaction %s)", updated.get("order_number"), transaction_id)

        await best_effort("payment confirmation email", self.mailer.send_payment_confirmation(updated))
        await best_effort(
            "payment notification",
            self.notifier.order_event(
                updated, "payment_received",
                f"Payment received for order #{updated.get('order_number')}",
                transaction_id=transaction_id,
            ),
        )
        return WebhookOutcome("processed", order["id"], "paid")

    # ── handlers ─────────────────────────────────────────────────────────────

    async def _on_capture_completed(self, event: WebhookEvent, order: Dict[str, Any]) -> WebhookOutcome:
        txn = capture_id(event)
        if not txn:
            logger.warning("PayPal event %s has no capture id", event.id)
            return WebhookOutcome("ignored", order["id"], "no capture id")
        amount = event.resource.amount
        return await self.mark_paid(
            order, txn,
            amount=amount.value if amount else None,
            currency=amount.currency_code if amount else None,
        )

    async def _on_order_approved(self, event: WebhookEvent, order: Dict[str, Any]) -> WebhookOutcome:
        # Buyer approved; money moves on capture.
        return WebhookOutcome("ignored", order["id"], "approval acknowledged")

    async def _on_capture_denied(self, event: WebhookEvent, order: Dict[str, Any]) -> WebhookOutcome:
        details = event.resource.status_details
        reason = "Payment denied by PayPal"
        if details and details.reason:
            reason = f"{reason}: {details.reason}"
        patch = build_transition(order, OrderState.PAYMENT_FAILED, now=self.clock(), reason=reason)
        updated = self._apply(order, patch)
        logger.info("Order %s marked as payment failed", updated.get("order_number"))
        await best_effort(
            "payment failed notification",
            self.notifier.order_event(updated, "payment_failed", f"Payment denied for order #{updated.get('order_number')}"),
        )
        return WebhookOutcome("processed", order["id"], "payment failed")

    async def _on_capture_pending(self, event: WebhookEvent, order: Dict[str, Any]) -> WebhookOutcome:
        patch = build_transition(order, OrderState.AWAITING_PAYMENT, now=self.clock())
        self._apply(order, patch)
        logger.info("Order %s payment pending at PayPal", order.get("order_number"))
        return WebhookOutcome("processed", order["id"], "payment pending")

    async def _on_capture_refunded(self, event: WebhookEvent, order: Dict[str, Any]) -> WebhookOutcome:
        if order.get("payment_status") == "refunded":
            return WebhookOutcome("ignored", order["id"], "already refunded")
        patch = build_transition(order, OrderState.REFUNDED, now=self.clock())
        if event.resource.id:
            patch["paypal_refund_id"] = event.resource.id
        updated = self._apply(order, patch)
        logger.info("Order %s refunded", updated.get("order_number"))

        amount = event.resource.amount
        await best_effort(
            "refund email",
            self.mailer.send_refund_confirmation(updated, amount.value if amount else None),
        )
        await best_effort(
            "refund notification",
            self.notifier.order_event(updated, "order_refunded", f"Order #{updated.get('order_number')} was refunded"),
        )
        return WebhookOutcome("processed", order["id"], "refunded")

    async def _on_order_voided(self, event: WebhookEvent, order: Dict[str, Any]) -> WebhookOutcome:
        if current_state(order) == OrderState.CANCELLED:
            return WebhookOutcome("ignored", order["id"], "already cancelled")
        patch = build_transition(order, OrderState.CANCELLED, now=self.clock())
        updated = self._apply(order, patch)
        logger.info("Order %s cancelled by PayPal void", updated.get("order_number"))
        await best_effort(
            "cancellation notification",
            self.notifier.order_event(updated, "order_cancelled", f"PayPal voided order #{updated.get('order_number')}"),
        )
        return WebhookOutcome("processed", order["id"], "cancelled")

    async def _on_dispute_created(self, event: WebhookEvent, order: Dict[str, Any]) -> WebhookOutcome:
        r = event.resource
        dispute_id = r.dispute_id or r.id
        existing = order.get("dispute") or {}
        if existing.get("status") == "open" and existing.get("id") == dispute_id:
            return WebhookOutcome("ignored", order["id"], "dispute already open")

        previous = current_state(order)
        if previous == OrderState.DISPUTED:
            previous = OrderState(existing.get("previous_state") or OrderState.PROCESSING.value)
        patch: Dict[str, Any] = dict(status_fields(OrderState.DISPUTED, order))
        patch["dispute"] = {
            "id": dispute_id,
            "status": "open",
            "reason": r.reason,
            "outcome": None,
            "opened_at": self.clock(),
            "resolved_at": None,
            "previous_state": previous.value,
        }
        updated = self._apply(order, patch)
        logger.warning("PayPal dispute %s opened on order %s", dispute_id, updated.get("order_number"))

        await best_effort("dispute alert email", self.mailer.send_dispute_alert(updated, dispute_id, r.reason))
        await best_effort(
            "dispute notification",
            self.notifier.order_event(
                updated, "dispute_opened",
                f"PayPal dispute opened on order #{updated.get('order_number')}",
                dispute_id=dispute_id,
            ),
        )
        return WebhookOutcome("processed", order["id"], "dispute opened")

    async def _on_dispute_resolved(self, event: WebhookEvent, order: Dict[str, Any]) -> WebhookOutcome:
        r = event.resource
        dispute = order.get("dispute") or {}
        if dispute.get("status") == "resolved":
            return WebhookOutcome("ignored", order["id"], "dispute already resolved")

        outcome = r.dispute_outcome.outcome_code if r.dispute_outcome else None
        patch: Dict[str, Any] = {
            "dispute.id": dispute.get("id") or r.dispute_id or r.id,
            "dispute.status": "resolved",
            "dispute.outcome": outcome,
            "dispute.resolved_at": self.clock(),
        }
        if current_state(order) == OrderState.DISPUTED:
            previous = OrderState(dispute.get("previous_state") or OrderState.PROCESSING.value)
            patch.update(status_fields(previous, order))
        updated = self._apply(order, patch)
        logger.info("PayPal dispute on order %s resolved (%s)", updated.get("order_number"), outcome)

        await best_effort(
            "dispute resolved notification",
            self.notifier.order_event(
                updated, "dispute_resolved",
                f"PayPal dispute on order #{updated.get('order_number')} resolved",
                outcome=outcome,
            ),
        )
        return WebhookOutcome("processed", order["id"], "dispute resolved")
