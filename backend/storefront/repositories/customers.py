from typing import Any, Dict, List, Optional

from firebase_admin import firestore
from google.cloud.firestore_v1 import SERVER_TIMESTAMP
from google.cloud.firestore_v1.base_query import FieldFilter

from storefront.repositories.common import newest_first, to_dict

COL = "customers"
NOTES_COL = "customer_notes"


def get(db, customer_id: str) -> Optional[Dict[str, Any]]:
    snap = db.collection(COL).document(customer_id).get()
    return to_dict(snap) if snap.exists else None


def find_by_email(db, email: str) -> Optional[Dict[str, Any]]:
    docs = list(
        db.collection(COL)
          .where(filter=FieldFilter("email", "==", email.strip().lower()))
          .limit(1)
          .stream()
    )
    return to_dict(docs[0]) if docs else None


def upsert_by_email(db, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Checkout path: returns the customer with this email, creating it if needed.
    Blank contact fields on an existing customer are filled in, set ones are kept.
    """
    email = data["email"].strip().lower()
    existing = find_by_email(db, email)
    if existing:
        fill = {
            k: v for k, v in data.items()
            if k != "email" and v and not existing.get(k)
        }
        if fill:
            db.collection(COL).document(existing["id"]).update({**fill, "updated_at": SERVER_TIMESTAMP})
            existing.update(fill)
        return existing

    ref = db.collection(COL).document()
    doc = {
        "email": email,
        "first_name": data.get("first_name"),
        "last_name": data.get("last_name"),
        "phone": data.get("phone"),
        "company": data.get("company"),
        "is_active": True,
        "created_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
    }
    ref.set(doc)
    return to_dict(ref.get())


def list_customers(db, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
    docs = list(
        db.collection(COL)
          .order_by("created_at", direction=firestore.Query.DESCENDING)
          .stream()
    )
    return [to_dict(d) for d in docs[offset:offset + limit]]


# ── Notes ────────────────────────────────────────────────────────────────────

def list_notes(db, customer_id: str) -> List[Dict[str, Any]]:
    docs = db.collection(NOTES_COL).where(filter=FieldFilter("customer_id", "==", customer_id)).stream()
    return newest_first(to_dict(d) for d in docs)


def get_note(db, note_id: str) -> Optional[Dict[str, Any]]:
    snap = db.collection(NOTES_COL).document(note_id).get()
    return to_dict(snap) if snap.exists else None


def add_note(db, customer_id: str, body: str, author: Optional[str]) -> Dict[str, Any]:
    ref = db.collection(NOTES_COL).document()
    ref.set({
        "customer_id": customer_id,
        "body": body,
        "author": author,
        "created_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
    })
    return to_dict(ref.get())


def update_note(db, note_id: str, body: str) -> Dict[str, Any]:
    ref = db.collection(NOTES_COL).document(note_id)
    ref.update({"body": body, "updated_at": SERVER_TIMESTAMP})
    return to_dict(ref.get())


def delete_note(db, note_id: str) -> None:
    db.collection(NOTES_COL).document(note_id).delete()
