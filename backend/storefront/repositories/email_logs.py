from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from firebase_admin import firestore
from google.cloud.firestore_v1 import SERVER_TIMESTAMP
from google.cloud.firestore_v1.base_query import FieldFilter

from storefront.repositories.common import newest_first, to_dict

COL = "email_logs"
TEMPLATES_COL = "email_templates"


def create(
    db,
    recipient_email: str,
    subject: str,
    template: Optional[str] = None,
    recipient_name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    ref = db.collection(COL).document()
    ref.set({
        "recipient_email": recipient_email.lower(),
        "recipient_name": recipient_name,
        "template": template,
        "subject": subject,
        "status": "pending",
        "metadata": metadata or {},
        "created_at": SERVER_TIMESTAMP,
    })
    return ref.id


def mark_sent(db, log_id: str, provider_id: Optional[str]) -> None:
    db.collection(COL).document(log_id).update({
        "status": "sent",
        "provider_id": provider_id,
        "sent_at": datetime.now(timezone.utc),
    })


def mark_failed(db, log_id: str, error_message: str) -> None:
    db.collection(COL).document(log_id).update({
        "status": "failed",
        "error_message": error_message[:1000],
    })


def list_logs(db, limit: int = 100) -> List[Dict[str, Any]]:
    docs = (
        db.collection(COL)
          .order_by("created_at", direction=firestore.Query.DESCENDING)
          .limit(limit)
          .stream()
    )
    return [to_dict(d) for d in docs]


def list_for_recipient(db, email: str) -> List[Dict[str, Any]]:
    docs = db.collection(COL).where(filter=FieldFilter("recipient_email", "==", email.lower())).stream()
    return newest_first(to_dict(d) for d in docs)


# ── Template overrides (document id = template name) ─────────────────────────

def get_template(db, name: str) -> Optional[Dict[str, Any]]:
    snap = db.collection(TEMPLATES_COL).document(name).get()
    return to_dict(snap) if snap.exists else None


def list_templates(db) -> List[Dict[str, Any]]:
    return [to_dict(d) for d in db.collection(TEMPLATES_COL).stream()]


def upsert_template(db, name: str, subject: str, html: str, is_active: bool = True) -> Dict[str, Any]:
    ref = db.collection(TEMPLATES_COL).document(name)
    ref.set({"subject": subject, "html": html, "is_active": is_active, "updated_at": SERVER_TIMESTAMP})
    return to_dict(ref.get())
