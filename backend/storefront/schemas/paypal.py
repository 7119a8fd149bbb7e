"""
storefront/schemas/paypal.py - PayPal webhook envelope and checkout payloads.

Only the fields the order lifecycle reads are modelled; everything else the
provider sends is kept (`extra = "allow"`) and ignored.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PayPalEventType(str, Enum):
    """Provider event types the storefront reacts to."""
    PAYMENT_CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
    CHECKOUT_ORDER_COMPLETED = "CHECKOUT.ORDER.COMPLETED"
    CHECKOUT_ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
    PAYMENT_CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
    PAYMENT_CAPTURE_PENDING = "PAYMENT.CAPTURE.PENDING"
    PAYMENT_CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"
    CHECKOUT_ORDER_VOIDED = "CHECKOUT.ORDER.VOIDED"
    PAYMENT_AUTHORIZATION_VOIDED = "PAYMENT.AUTHORIZATION.VOIDED"
    CUSTOMER_DISPUTE_CREATED = "CUSTOMER.DISPUTE.CREATED"
    CUSTOMER_DISPUTE_RESOLVED = "CUSTOMER.DISPUTE.RESOLVED"

    @classmethod
    def parse(cls, value: str) -> Optional["PayPalEventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


class _Base(BaseModel):
    class Config:
        extra = "allow"


class Money(_Base):
    currency_code: Optional[str] = None
    value: Optional[str] = None


class DisputedTransaction(_Base):
    seller_transaction_id: Optional[str] = None
    custom: Optional[str] = None


class DisputeOutcome(_Base):
    outcome_code: Optional[str] = None


class StatusDetails(_Base):
    reason: Optional[str] = None


class CaptureRef(_Base):
    id: Optional[str] = None
    status: Optional[str] = None


class Payments(_Base):
    captures: List[CaptureRef] = Field(default_factory=list)


class PurchaseUnit(_Base):
    custom_id: Optional[str] = None
    payments: Optional[Payments] = None


class EventResource(_Base):
    id: Optional[str] = None
    status: Optional[str] = None
    custom_id: Optional[str] = None
    amount: Optional[Money] = None
    status_details: Optional[StatusDetails] = None
    purchase_units: List[PurchaseUnit] = Field(default_factory=list)

    # dispute resources
    dispute_id: Optional[str] = None
    reason: Optional[str] = None
    disputed_transactions: List[DisputedTransaction] = Field(default_factory=list)
    dispute_outcome: Optional[DisputeOutcome] = None


class WebhookEvent(_Base):
    id: str
    event_type: str
    resource_type: Optional[str] = None
    summary: Optional[str] = None
    create_time: Optional[str] = None
    resource: EventResource = Field(default_factory=EventResource)


class PayPalOrderCreate(BaseModel):
    order_id: str = Field(..., description="Storefront order id, echoed back as custom_id")
    intent: str = "CAPTURE"


class PayPalConfigOut(BaseModel):
    client_id: str
    environment: str
    currency: str
