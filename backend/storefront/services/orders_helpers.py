# storefront/services/orders_helpers.py
from __future__ import annotations

import secrets
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from storefront.config import Settings
from storefront.repositories import orders as orders_repo
from storefront.schemas.order import OrderCreate, OrderOut, OrderState, OrderTrackingOut
from storefront.services.lifecycle import current_state, status_fields

# Public helpers of this module
__all__ = [
    "money",
    "coerce_item",
    "calc_totals",
    "generate_order_number",
    "initial_state",
    "build_order_doc",
    "order_doc_to_out",
    "order_doc_to_tracking",
    "tracking_url",
    "emails_match",
]

CENT = Decimal("0.01")


# ──────────────────────────────────────────────────────────────────────────────
# Low-level helpers
# ──────────────────────────────────────────────────────────────────────────────

def money(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def _s(value: Decimal) -> str:
    # amounts are stored as two-decimal strings
    return str(money(value))


def coerce_item(raw: Any) -> Dict[str, Any]:
    """
    Minimum fields: product_id / name / quantity / price.
    `price` is the unit price; the stored line carries unit_price and line_total.
    """
    d = raw if isinstance(raw, dict) else raw.model_dump()
    qty = max(1, int(d.get("quantity", 1)))
    unit = money(d.get("unit_price", d.get("price", 0)))
    return {
        "product_id": d.get("product_id") or d.get("id"),
        "name": d.get("name") or d.get("title") or "Item",
        "sku": d.get("sku"),
        "quantity": qty,
        "unit_price": _s(unit),
        "line_total": _s(unit * qty),
    }


def calc_totals(
    items: List[Dict[str, Any]],
    shipping_cost: Any = 0,
    *,
    tax_rate: Decimal = Decimal("0.10"),
    prices_include_tax: bool = True,
) -> Dict[str, str]:
    """
    Order amount summary. With tax-inclusive prices (Australian GST) the tax is
    the GST component of subtotal + shipping and the total is not increased.
    """
    subtotal = sum((Decimal(it["line_total"]) for it in items), Decimal("0"))
    shipping = money(shipping_cost)
    taxable = subtotal + shipping
    if prices_include_tax:
        tax = taxable * tax_rate / (1 + tax_rate)
        total = taxable
    else:
        tax = taxable * tax_rate
        total = taxable + money(tax)

    return {
        "subtotal": _s(subtotal),
        "shipping_cost": _s(shipping),
        "tax_amount": _s(tax),
        "total": _s(total),
    }


def generate_order_number(db, prefix: str, attempts: int = 10) -> str:
    """`<prefix>-<8 digits>`, checked for uniqueness against stored orders."""
    for _ in range(attempts):
        number = f"{prefix}-{secrets.randbelow(10 ** 8):08d}"
        if not orders_repo.number_exists(db, number):
            return number
    raise RuntimeError("Could not allocate a unique order number")


def initial_state(payment_method: str) -> OrderState:
    return OrderState.AWAITING_PAYMENT if payment_method == "paypal" else OrderState.PENDING


def tracking_url(cfg: Settings, tracking_number: str) -> str:
    return cfg.tracking_url_template.format(tracking_number=tracking_number)


def build_order_doc(
    *,
    payload: OrderCreate,
    customer_id: str,
    order_number: str,
    cfg: Settings,
) -> Dict[str, Any]:
    """
    Compiles the Firestore document for a new checkout order.
    """
    items = [coerce_item(it) for it in payload.items]
    totals = calc_totals(
        items,
        payload.shipping_cost,
        tax_rate=cfg.tax_rate,
        prices_include_tax=cfg.prices_include_tax,
    )
    customer = payload.customer
    shipping_address = payload.shipping_address.model_dump()
    billing_address = payload.billing_address.model_dump() if payload.billing_address else shipping_address

    doc = {
        "order_number": order_number,
        **status_fields(initial_state(payload.payment_method)),
        "customer_id": customer_id,
        "customer_email": str(customer.email).lower(),
        "customer_name": f"{customer.first_name} {customer.last_name}".strip(),
        "customer_phone": customer.phone,
        "shipping_address": shipping_address,
        "billing_address": billing_address,
        "items": items,
        "currency": cfg.currency,
        **totals,
        "shipping_method": payload.shipping_method,
        "payment_method": payload.payment_method,
        "paypal_order_id": None,
        "paypal_transaction_id": None,
        "paid_at": None,
        "refunded_at": None,
        "cancelled_at": None,
        "payment_failure_reason": None,
        "shipment": {},
        "shipping_notification_sent_at": None,
        "dispute": None,
        "notes": payload.notes,
        "printed_at": None,
        "printed_by": None,
    }
    return doc


def order_doc_to_out(doc: Dict[str, Any]) -> OrderOut:
    data = dict(doc)
    # records written before `state` existed
    if not data.get("state"):
        data.update(status_fields(current_state(data), data))
    data.setdefault("subtotal", data.get("total") or "0")
    data.setdefault("total", data.get("subtotal") or "0")
    data.setdefault("customer_email", "")
    return OrderOut.model_validate(data)


def order_doc_to_tracking(doc: Dict[str, Any]) -> OrderTrackingOut:
    out = order_doc_to_out(doc)
    shipment = out.shipment
    return OrderTrackingOut(
        order_number=out.order_number,
        status=out.status,
        payment_status=out.payment_status,
        shipping_status=out.shipping_status,
        total=out.total,
        currency=out.currency,
        items=out.items,
        tracking_number=shipment.tracking_number if shipment else None,
        tracking_url=shipment.tracking_url if shipment else None,
        created_at=out.created_at,
        updated_at=out.updated_at,
    )


def emails_match(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()
