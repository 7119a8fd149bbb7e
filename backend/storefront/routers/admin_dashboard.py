"""
Admin Dashboard Router
Order overview for the admin panel: counts per lifecycle state, paid revenue
and the orders that need someone to act.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable

from fastapi import APIRouter, Depends

from storefront.config import get_db
from storefront.core.security import get_current_staff
from storefront.repositories import orders as orders_repo
from storefront.schemas.order import OrderState
from storefront.services.lifecycle import current_state
from storefront.services.orders_helpers import order_doc_to_out

router = APIRouter(prefix="/dashboard", tags=["Admin: Dashboard"], dependencies=[Depends(get_current_staff)])

# states in which an order waits for staff
NEEDS_ACTION = (OrderState.PENDING, OrderState.PROCESSING, OrderState.PAYMENT_FAILED, OrderState.DISPUTED)


def _amount(value: Any) -> Decimal:
    try:
        return Decimal(str(value or "0"))
    except InvalidOperation:
        return Decimal("0")


def compute_stats(orders: Iterable[Dict[str, Any]], now: datetime) -> Dict[str, Any]:
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)

    stats: Dict[str, Any] = {
        "total_orders": 0,
        "by_state": {s.value: 0 for s in OrderState},
        "orders_today": 0,
        "revenue_today": Decimal("0"),
        "revenue_this_week": Decimal("0"),
        "revenue_this_month": Decimal("0"),
        "needs_action": 0,
        "open_disputes": 0,
    }

    for order in orders:
        state = current_state(order)
        stats["total_orders"] += 1
        stats["by_state"][state.value] += 1
        if state in NEEDS_ACTION:
            stats["needs_action"] += 1
        if (order.get("dispute") or {}).get("status") == "open":
            stats["open_disputes"] += 1

        created = order.get("created_at")
        if isinstance(created, datetime) and created >= day_start:
            stats["orders_today"] += 1

        # revenue counts money kept: paid and not refunded
        paid_at = order.get("paid_at")
        if order.get("payment_status") != "paid" or not isinstance(paid_at, datetime):
            continue
        total = _amount(order.get("total"))
        if paid_at >= day_start:
            stats["revenue_today"] += total
        if paid_at >= week_ago:
            stats["revenue_this_week"] += total
        if paid_at >= month_ago:
            stats["revenue_this_month"] += total

    for key in ("revenue_today", "revenue_this_week", "revenue_this_month"):
        stats[key] = str(stats[key].quantize(Decimal("0.01")))
    return stats


@router.get("/stats")
def get_dashboard_stats(db=Depends(get_db)) -> Dict[str, Any]:
    """
    Dashboard statistics plus the five newest orders.
    """
    stats = compute_stats(orders_repo.stream_all(db), datetime.now(timezone.utc))
    recent, _ = orders_repo.list_orders(db, limit=5)
    stats["recent_orders"] = [order_doc_to_out(o) for o in recent]
    return stats
