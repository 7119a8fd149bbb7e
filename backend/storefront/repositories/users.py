from typing import Any, Dict, List, Optional

from google.cloud.firestore_v1 import SERVER_TIMESTAMP
from google.cloud.firestore_v1.base_query import FieldFilter

from storefront.repositories.common import to_dict

from storefront.schemas.principal import STAFF_ROLES

COL = "users"


def get(db, uid: str) -> Optional[Dict[str, Any]]:
    snap = db.collection(COL).document(uid).get()
    return to_dict(snap) if snap.exists else None


def list_staff(db) -> List[Dict[str, Any]]:
    docs = db.collection(COL).where(filter=FieldFilter("role", "in", list(STAFF_ROLES))).stream()
    return [to_dict(d) for d in docs]


def staff_ids(db) -> List[str]:
    return [u["id"] for u in list_staff(db)]


def set_role(db, uid: str, role: str, email: Optional[str] = None, name: Optional[str] = None) -> Dict[str, Any]:
    patch: Dict[str, Any] = {"role": role, "updated_at": SERVER_TIMESTAMP}
    if email:
        patch["email"] = email
    if name:
        patch["name"] = name
    ref = db.collection(COL).document(uid)
    ref.set(patch, merge=True)
    return to_dict(ref.get())
