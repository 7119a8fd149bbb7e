from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def to_dict(snap) -> Dict[str, Any]:
    data = snap.to_dict() or {}
    data["id"] = snap.id
    return data


def created_key(data: Dict[str, Any]):
    return data.get("created_at") or EPOCH


def newest_first(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(items, key=created_key, reverse=True)
