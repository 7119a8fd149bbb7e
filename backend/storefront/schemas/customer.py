"""
storefront/schemas/customer.py - Customer, customer note and email history models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from storefront.schemas.order import OrderOut


class CustomerOut(BaseModel):
    id: str
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CustomerDetail(CustomerOut):
    orders: List[OrderOut] = Field(default_factory=list)


class NoteCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)


class NoteOut(BaseModel):
    id: str
    customer_id: str
    body: str
    author: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EmailLogOut(BaseModel):
    id: str
    recipient_email: str
    recipient_name: Optional[str] = None
    template: Optional[str] = None
    subject: str
    status: str
    provider_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
