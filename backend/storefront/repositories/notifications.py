from typing import Any, Dict, List, Optional

from google.cloud.firestore_v1 import SERVER_TIMESTAMP
from google.cloud.firestore_v1.base_query import FieldFilter

from storefront.repositories.common import newest_first, to_dict

COL = "notifications"


def create(db, user_id: str, type: str, title: str, message: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    ref = db.collection(COL).document()
    ref.set({
        "user_id": user_id,
        "type": type,
        "title": title,
        "message": message,
        "data": data or {},
        "is_read": False,
        "created_at": SERVER_TIMESTAMP,
    })
    # read back so created_at is the resolved server time
    return to_dict(ref.get())


def get(db, notification_id: str) -> Optional[Dict[str, Any]]:
    snap = db.collection(COL).document(notification_id).get()
    return to_dict(snap) if snap.exists else None


def list_unread(db, user_id: str) -> List[Dict[str, Any]]:
    docs = (
        db.collection(COL)
          .where(filter=FieldFilter("user_id", "==", user_id))
          .where(filter=FieldFilter("is_read", "==", False))
          .stream()
    )
    return newest_first(to_dict(d) for d in docs)


def mark_read(db, notification_id: str) -> bool:
    ref = db.collection(COL).document(notification_id)
    if not ref.get().exists:
        return False
    ref.update({"is_read": True})
    return True


def mark_all_read(db, user_id: str) -> int:
    changed = 0
    for item in list_unread(db, user_id):
        db.collection(COL).document(item["id"]).update({"is_read": True})
        changed += 1
    return changed
