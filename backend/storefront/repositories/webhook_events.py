"""
Ledger of received payment-provider events (document id = provider event id).

`claim` uses Firestore `create()`, which fails if the document exists, so two
deliveries of the same event cannot both be processed.
"""
from datetime import datetime, timezone
from typing import Optional

from google.api_core.exceptions import AlreadyExists
from google.cloud.firestore_v1.base_query import FieldFilter

COL = "paypal_webhook_events"


def claim(db, event_id: str, event_type: str) -> bool:
    """True if this call claimed the event, False if it was seen before."""
    try:
        db.collection(COL).document(event_id).create({
            "event_type": event_type,
            "status": "processing",
            "received_at": datetime.now(timezone.utc),
        })
    except AlreadyExists:
        return False
    return True


def finish(db, event_id: str, status: str, order_id: Optional[str] = None) -> None:
    db.collection(COL).document(event_id).update({
        "status": status,
        "order_id": order_id,
        "finished_at": datetime.now(timezone.utc),
    })


def release(db, event_id: str) -> None:
    db.collection(COL).document(event_id).delete()


def prune_older_than(db, cutoff: datetime) -> int:
    removed = 0
    for snap in db.collection(COL).where(filter=FieldFilter("received_at", "<", cutoff)).stream():
        snap.reference.delete()
        removed += 1
    return removed
