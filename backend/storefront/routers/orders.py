from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from storefront.config import get_db, settings
from storefront.core.deps import get_mailer, get_notifier, get_status_service
from storefront.core.security import get_current_staff, require_admin
from storefront.repositories import customers as customers_repo
from storefront.repositories import orders as orders_repo
from storefront.schemas.order import (
    OrderCreate,
    OrderCreated,
    OrderEmailBody,
    OrderOut,
    OrderPage,
    OrderPatch,
    OrderState,
    OrderTrackingOut,
    PrintBody,
    StatusUpdate,
    TrackingBody,
)
from storefront.schemas.principal import Principal
from storefront.services.lifecycle import (
    IllegalTransition,
    InvalidTrackingNumber,
    MissingPaymentReference,
    OrderNotFound,
    current_state,
)
from storefront.services.mailer import Mailer
from storefront.services.notifications import NotificationService
from storefront.services.order_status import OrderStatusService
from storefront.services.orders_helpers import (
    build_order_doc,
    emails_match,
    generate_order_number,
    money,
    order_doc_to_out,
    order_doc_to_tracking,
)
from storefront.services.side_effects import best_effort

logger = logging.getLogger("storefront.orders")

router = APIRouter(prefix="/orders", tags=["Orders"])
admin_router = APIRouter(prefix="/orders", tags=["Admin Orders"], dependencies=[Depends(get_current_staff)])


def _get_or_404(db, order_id: str) -> Dict[str, Any]:
    order = orders_repo.get(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _lifecycle_error(e: Exception) -> HTTPException:
    if isinstance(e, OrderNotFound):
        return HTTPException(status_code=404, detail="Order not found")
    if isinstance(e, IllegalTransition):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# ──────────────────────────────────────────────────────────────────────────────
# Storefront (public)
# ──────────────────────────────────────────────────────────────────────────────

@router.post("", response_model=OrderCreated, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    db=Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    notifier: NotificationService = Depends(get_notifier),
):
    """
    Checkout: one order per call.
    - Customer record is created or completed by email.
    - Totals are computed here from the items; client totals are ignored.
    - PayPal orders start in `awaiting_payment` and are confirmed by the
      payment email; other orders get the confirmation email right away.
    """
    c = payload.customer
    customer = customers_repo.upsert_by_email(db, {
        "email": str(c.email),
        "first_name": c.first_name,
        "last_name": c.last_name,
        "phone": c.phone,
        "company": c.company,
    })

    order_number = generate_order_number(db, settings.order_number_prefix)
    doc = build_order_doc(payload=payload, customer_id=customer["id"], order_number=order_number, cfg=settings)
    order_id = orders_repo.create(db, doc)
    order = orders_repo.get(db, order_id)
    logger.info("Order %s created (%s, total %s)", order_number, payload.payment_method, doc["total"])

    if payload.payment_method != "paypal":
        await best_effort("order confirmation email", mailer.send_order_confirmation(order))
    await best_effort("new order alert", mailer.send_new_order_alert(order))
    await best_effort(
        "new order notification",
        notifier.order_event(order, "order_new", f"Order #{order_number} from {order.get('customer_name')}"),
    )
    return OrderCreated(order=order_doc_to_out(order), customer_id=customer["id"])


@router.get("/track", response_model=OrderTrackingOut)
def track_order(
    order_number: str = Query(..., min_length=3),
    email: str = Query(..., min_length=3),
    db=Depends(get_db),
):
    """Guest order lookup; the email must match the order's email."""
    order = orders_repo.find_by_number(db, order_number.strip().upper())
    if not order or not emails_match(order.get("customer_email"), email):
        raise HTTPException(status_code=404, detail="Order not found")
    return order_doc_to_tracking(order)


# ──────────────────────────────────────────────────────────────────────────────
# Admin
# ──────────────────────────────────────────────────────────────────────────────

@admin_router.get("", response_model=OrderPage)
def admin_list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    state: Optional[OrderState] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db=Depends(get_db),
):
    orders, total = orders_repo.list_orders(
        db,
        status=status_filter,
        state=state.value if state else None,
        limit=limit,
        offset=offset,
    )
    return OrderPage(orders=[order_doc_to_out(o) for o in orders], total=total, limit=limit, offset=offset)


@admin_router.get("/{order_id}", response_model=OrderOut)
def admin_get_order(order_id: str, db=Depends(get_db)):
    return order_doc_to_out(_get_or_404(db, order_id))


@admin_router.put("/{order_id}/status", response_model=OrderOut)
async def admin_update_status(
    order_id: str,
    body: StatusUpdate,
    principal: Principal = Depends(get_current_staff),
    service: OrderStatusService = Depends(get_status_service),
):
    try:
        order = await service.change_status(
            order_id,
            body.status,
            tracking_number=body.tracking_number,
            transaction_id=body.transaction_id,
            reason=body.reason,
            actor=principal.email or principal.uid,
        )
    except (OrderNotFound, IllegalTransition, InvalidTrackingNumber, MissingPaymentReference) as e:
        raise _lifecycle_error(e)
    return order_doc_to_out(order)


@admin_router.post("/{order_id}/tracking", response_model=OrderOut)
async def admin_ship_order(
    order_id: str,
    body: TrackingBody,
    principal: Principal = Depends(get_current_staff),
    service: OrderStatusService = Depends(get_status_service),
):
    """Ship with a 12-digit carrier tracking number; sends the shipped email."""
    try:
        order = await service.ship(
            order_id,
            body.tracking_number,
            box_size=body.box_size,
            box_cost=body.box_cost,
            label_url=body.label_url,
            actor=principal.email or principal.uid,
        )
    except (OrderNotFound, IllegalTransition, InvalidTrackingNumber, MissingPaymentReference) as e:
        raise _lifecycle_error(e)
    return order_doc_to_out(order)


@admin_router.patch("/{order_id}", response_model=OrderOut)
def admin_edit_order(order_id: str, body: OrderPatch, db=Depends(get_db)):
    """Edits non-status fields only."""
    _get_or_404(db, order_id)
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")

    patch: Dict[str, Any] = {}
    for key in ("box_size", "label_url"):
        if key in changes:
            patch[f"shipment.{key}"] = changes.pop(key)
    if "box_cost" in changes:
        cost = changes.pop("box_cost")
        patch["shipment.box_cost"] = str(money(cost)) if cost is not None else None
    patch.update(changes)

    orders_repo.update(db, order_id, patch)
    return order_doc_to_out(_get_or_404(db, order_id))


@admin_router.post("/{order_id}/print", response_model=OrderOut)
def admin_mark_printed(
    order_id: str,
    body: Optional[PrintBody] = None,
    principal: Principal = Depends(get_current_staff),
    db=Depends(get_db),
):
    _get_or_404(db, order_id)
    printed_by = (body.printed_by if body else None) or principal.email or principal.uid
    orders_repo.update(db, order_id, {"printed_at": datetime.now(timezone.utc), "printed_by": printed_by})
    return order_doc_to_out(_get_or_404(db, order_id))


@admin_router.post("/{order_id}/email")
async def admin_send_order_email(
    order_id: str,
    body: OrderEmailBody,
    db=Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    """
    Re-sends a customer email. A provider failure is reported in the body
    (success=false), not as an HTTP error.
    """
    order = _get_or_404(db, order_id)
    state = current_state(order)

    if body.type == "confirmation":
        result = await mailer.send_order_confirmation(order)
    elif body.type == "receipt":
        if order.get("payment_status") != "paid":
            raise HTTPException(status_code=400, detail="Order is not paid")
        result = await mailer.send_payment_confirmation(order)
    elif body.type == "shipped":
        if not (order.get("shipment") or {}).get("tracking_number"):
            raise HTTPException(status_code=400, detail="Order has no tracking number")
        result = await mailer.send_shipped(order)
        if result.success:
            orders_repo.update(db, order_id, {"shipping_notification_sent_at": datetime.now(timezone.utc)})
    else:
        result = await mailer.send_state_update(order, state.value)
        if result is None:
            raise HTTPException(status_code=400, detail=f"No status email for state '{state.value}'")

    return {"success": result.success, "log_id": result.log_id, "error": result.error}


@admin_router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_delete_order(order_id: str, principal: Principal = Depends(require_admin), db=Depends(get_db)):
    if not orders_repo.delete(db, order_id):
        raise HTTPException(status_code=404, detail="Order not found")
    logger.warning("Order %s hard-deleted by %s", order_id, principal.email or principal.uid)
