from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class NotificationOut(BaseModel):
    id: str
    user_id: str
    type: str  # order_new, order_updated, order_shipped, payment_received, dispute_opened ...
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: Optional[datetime] = None
