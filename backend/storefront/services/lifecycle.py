# storefront/services/lifecycle.py
"""
Order lifecycle.

An order has one authoritative `state` (OrderState). The three legacy fields
(`status`, `payment_status`, `shipping_status`) that the admin UI and the
email templates read are always written together from STATE_FIELDS, so an
order can never be stored as e.g. status=delivered / payment_status=pending.

Admin-driven changes are checked against ADMIN_TRANSITIONS. Payment webhooks
are not: they apply whatever the provider reports last.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from storefront.schemas.order import OrderState

__all__ = [
    "STATE_FIELDS",
    "ADMIN_TRANSITIONS",
    "LifecycleError",
    "IllegalTransition",
    "InvalidTrackingNumber",
    "MissingPaymentReference",
    "OrderNotFound",
    "current_state",
    "status_fields",
    "check_admin_transition",
    "validate_tracking_number",
    "build_transition",
]

S = OrderState

# state -> (status, payment_status, shipping_status); None keeps the current value
STATE_FIELDS: Dict[OrderState, Tuple[Optional[str], Optional[str], Optional[str]]] = {
    S.PENDING:          ("pending",    "pending",   "not_shipped"),
    S.AWAITING_PAYMENT: ("pending",    "pending",   "not_shipped"),
    S.PAYMENT_FAILED:   ("pending",    "failed",    "not_shipped"),
    S.PROCESSING:       ("processing", "paid",      "preparing"),
    S.SHIPPED:          ("shipped",    "paid",      "shipped"),
    S.IN_TRANSIT:       ("shipped",    "paid",      "in_transit"),
    S.DELIVERED:        ("delivered",  "paid",      "delivered"),
    S.CANCELLED:        ("cancelled",  "cancelled", "not_shipped"),
    S.REFUNDED:         ("cancelled",  "refunded",  None),
    S.DISPUTED:         (None,         None,        None),
}

ADMIN_TRANSITIONS: Dict[OrderState, frozenset] = {
    S.PENDING:          frozenset({S.AWAITING_PAYMENT, S.PROCESSING, S.CANCELLED}),
    S.AWAITING_PAYMENT: frozenset({S.PENDING, S.PROCESSING, S.PAYMENT_FAILED, S.CANCELLED}),
    S.PAYMENT_FAILED:   frozenset({S.AWAITING_PAYMENT, S.PROCESSING, S.CANCELLED}),
    S.PROCESSING:       frozenset({S.SHIPPED, S.CANCELLED, S.REFUNDED}),
    S.SHIPPED:          frozenset({S.IN_TRANSIT, S.DELIVERED, S.REFUNDED}),
    S.IN_TRANSIT:       frozenset({S.DELIVERED, S.REFUNDED}),
    S.DELIVERED:        frozenset({S.REFUNDED}),
    S.CANCELLED:        frozenset(),
    S.REFUNDED:         frozenset(),
    S.DISPUTED:         frozenset({S.REFUNDED}),
}

TRACKING_NUMBER_RE = re.compile(r"[0-9]{12}")


class LifecycleError(ValueError):
    """Base class for rejected order state changes."""


class IllegalTransition(LifecycleError):
    def __init__(self, current: OrderState, target: OrderState):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current.value}' to '{target.value}'")


class InvalidTrackingNumber(LifecycleError):
    pass


class MissingPaymentReference(LifecycleError):
    pass


class OrderNotFound(LookupError):
    pass


def current_state(order: Mapping[str, Any]) -> OrderState:
    """
    Returns the order's lifecycle state.
    Records written before `state` existed (imports, manual edits) are mapped
    from their legacy fields.
    """
    raw = order.get("state")
    if raw:
        try:
            return OrderState(raw)
        except ValueError:
            pass

    status = (order.get("status") or "").lower()
    payment = (order.get("payment_status") or "").lower()
    shipping = (order.get("shipping_status") or "").lower()
    if payment == "refunded":
        return S.REFUNDED
    if status in ("cancelled", "canceled"):
        return S.CANCELLED
    if status == "delivered" or shipping == "delivered":
        return S.DELIVERED
    if status == "shipped" or shipping in ("shipped", "in_transit"):
        return S.IN_TRANSIT if shipping == "in_transit" else S.SHIPPED
    if status == "processing" or payment in ("paid", "completed"):
        return S.PROCESSING
    if payment == "failed" or status == "payment_failed":
        return S.PAYMENT_FAILED
    if status == "pending_payment":
        return S.AWAITING_PAYMENT
    return S.PENDING


def status_fields(target: OrderState, order: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
    """The state field plus the three derived legacy fields for `target`."""
    order = order or {}
    status, payment, shipping = STATE_FIELDS[target]
    fallback = STATE_FIELDS[S.PENDING]
    return {
        "state": target.value,
        "status": status or order.get("status") or fallback[0],
        "payment_status": payment or order.get("payment_status") or fallback[1],
        "shipping_status": shipping or order.get("shipping_status") or fallback[2],
    }


def check_admin_transition(current: OrderState, target: OrderState) -> None:
    if current == target:
        return
    if target not in ADMIN_TRANSITIONS[current]:
        raise IllegalTransition(current, target)


def validate_tracking_number(value: Optional[str]) -> str:
    """Carrier tracking numbers are exactly 12 digits."""
    tracking = (value or "").strip()
    if not TRACKING_NUMBER_RE.fullmatch(tracking):
        raise InvalidTrackingNumber("Tracking number must be exactly 12 digits")
    return tracking


def build_transition(
    order: Mapping[str, Any],
    target: OrderState,
    *,
    now: datetime,
    transaction_id: Optional[str] = None,
    tracking_number: Optional[str] = None,
    tracking_url: Optional[str] = None,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Firestore update patch moving `order` to `target`.

    Validates everything the target state needs before returning, so callers
    can persist the patch as a single write:
    - paid states need a transaction id (given or already on the order);
    - `shipped` needs a valid tracking number (given or already on the order).
    Dotted keys address nested fields (Firestore update semantics).
    """
    patch: Dict[str, Any] = dict(status_fields(target, order))

    if patch["payment_status"] == "paid":
        txn = transaction_id or order.get("paypal_transaction_id")
        if not txn:
            raise MissingPaymentReference("A payment transaction id is required to mark the order as paid")
        if txn != order.get("paypal_transaction_id"):
            patch["paypal_transaction_id"] = txn
            patch["paid_at"] = now
        elif not order.get("paid_at"):
            patch["paid_at"] = now
        patch["payment_failure_reason"] = None

    if target == S.SHIPPED:
        existing = (order.get("shipment") or {}).get("tracking_number")
        tracking = validate_tracking_number(tracking_number or existing)
        patch["shipment.tracking_number"] = tracking
        if tracking_url:
            patch["shipment.tracking_url"] = tracking_url
        if tracking != existing or not (order.get("shipment") or {}).get("shipped_at"):
            patch["shipment.shipped_at"] = now
    elif target == S.PAYMENT_FAILED:
        patch["payment_failure_reason"] = reason or "Payment failed"
    elif target == S.REFUNDED:
        patch["refunded_at"] = now
    elif target == S.CANCELLED:
        patch["cancelled_at"] = now

    return patch
