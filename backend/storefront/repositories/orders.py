from typing import Any, Dict, List, Optional, Tuple

from firebase_admin import firestore
from google.api_core.exceptions import FailedPrecondition
from google.cloud.firestore_v1 import SERVER_TIMESTAMP
from google.cloud.firestore_v1.base_query import FieldFilter

from storefront.repositories.common import created_key, to_dict

COL = "orders"


def get(db, order_id: str) -> Optional[Dict[str, Any]]:
    if not order_id:
        return None
    snap = db.collection(COL).document(order_id).get()
    return to_dict(snap) if snap.exists else None


def _first(db, field: str, value: Any) -> Optional[Dict[str, Any]]:
    docs = list(
        db.collection(COL)
          .where(filter=FieldFilter(field, "==", value))
          .limit(1)
          .stream()
    )
    return to_dict(docs[0]) if docs else None


def find_by_number(db, order_number: str) -> Optional[Dict[str, Any]]:
    return _first(db, "order_number", order_number)


def find_by_paypal_transaction(db, transaction_id: str) -> Optional[Dict[str, Any]]:
    return _first(db, "paypal_transaction_id", transaction_id)


def find_by_paypal_order(db, paypal_order_id: str) -> Optional[Dict[str, Any]]:
    return _first(db, "paypal_order_id", paypal_order_id)


def number_exists(db, order_number: str) -> bool:
    return find_by_number(db, order_number) is not None


def create(db, doc: Dict[str, Any]) -> str:
    ref = db.collection(COL).document()
    ref.set({**doc, "created_at": SERVER_TIMESTAMP, "updated_at": SERVER_TIMESTAMP})
    return ref.id


def update(db, order_id: str, patch: Dict[str, Any]) -> None:
    db.collection(COL).document(order_id).update({**patch, "updated_at": SERVER_TIMESTAMP})


def delete(db, order_id: str) -> bool:
    ref = db.collection(COL).document(order_id)
    if not ref.get().exists:
        return False
    ref.delete()
    return True


def _sorted_stream(query, fallback):
    # Composite index may be missing: fall back to an unordered query sorted in Python
    try:
        return list(query.order_by("created_at", direction=firestore.Query.DESCENDING).stream())
    except FailedPrecondition:
        return sorted(
            list(fallback.stream()),
            key=lambda d: created_key(d.to_dict() or {}),
            reverse=True,
        )


def list_orders(
    db,
    *,
    status: Optional[str] = None,
    state: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    """Newest first. Returns (page, total matching)."""
    query = db.collection(COL)
    if status:
        query = query.where(filter=FieldFilter("status", "==", status))
    if state:
        query = query.where(filter=FieldFilter("state", "==", state))
    docs = _sorted_stream(query, query)
    page = docs[offset:offset + limit]
    return [to_dict(d) for d in page], len(docs)


def list_for_customer(db, customer_id: str) -> List[Dict[str, Any]]:
    query = db.collection(COL).where(filter=FieldFilter("customer_id", "==", customer_id))
    return [to_dict(d) for d in _sorted_stream(query, query)]


def stream_all(db):
    for snap in db.collection(COL).stream():
        yield to_dict(snap)
