# storefront/schemas/order.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

# Legacy status fields, always derived from OrderState
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded", "cancelled"]
ShippingStatus = Literal["not_shipped", "preparing", "shipped", "in_transit", "delivered"]


class OrderState(str, Enum):
    """Single authoritative lifecycle state of an order."""
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    PAYMENT_FAILED = "payment_failed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class _Base(BaseModel):
    class Config:
        extra = "allow"


class Address(_Base):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    country: str = "AU"


class CustomerData(_Base):
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    company: Optional[str] = None


# (Input) line item sent by the checkout
class OrderItem(_Base):
    product_id: str
    name: str
    sku: Optional[str] = None
    quantity: int = Field(1, ge=1)
    price: Decimal = Field(..., ge=0)


class OrderItemOut(_Base):
    product_id: str
    name: str
    sku: Optional[str] = None
    quantity: int = 1
    unit_price: Decimal
    line_total: Decimal


class OrderCreate(_Base):
    customer: CustomerData
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    shipping_method: Literal["standard", "express"] = "standard"
    shipping_cost: Decimal = Field(Decimal("0"), ge=0)
    payment_method: Literal["paypal", "manual"] = "paypal"
    notes: Optional[str] = None


class ShipmentOut(_Base):
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    label_url: Optional[str] = None
    box_size: Optional[str] = None
    box_cost: Optional[Decimal] = None
    shipped_at: Optional[datetime] = None


class DisputeOut(_Base):
    id: Optional[str] = None
    status: Literal["open", "resolved"]
    reason: Optional[str] = None
    outcome: Optional[str] = None
    opened_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    previous_state: Optional[OrderState] = None


class OrderOut(_Base):
    id: str
    order_number: str
    state: OrderState
    status: OrderStatus
    payment_status: PaymentStatus
    shipping_status: ShippingStatus

    customer_id: Optional[str] = None
    customer_email: str
    customer_name: Optional[str] = None
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    items: List[OrderItemOut] = Field(default_factory=list)

    currency: str = "AUD"
    subtotal: Decimal
    shipping_cost: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total: Decimal

    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None
    paypal_order_id: Optional[str] = None
    paypal_transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payment_failure_reason: Optional[str] = None

    shipment: Optional[ShipmentOut] = None
    shipping_notification_sent_at: Optional[datetime] = None
    dispute: Optional[DisputeOut] = None

    notes: Optional[str] = None
    printed_at: Optional[datetime] = None
    printed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderPage(BaseModel):
    orders: List[OrderOut]
    total: int
    limit: int
    offset: int


class OrderTrackingOut(BaseModel):
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    shipping_status: ShippingStatus
    total: Decimal
    currency: str
    items: List[OrderItemOut] = Field(default_factory=list)
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# (Input) admin status change
class StatusUpdate(BaseModel):
    status: OrderState
    tracking_number: Optional[str] = None
    transaction_id: Optional[str] = Field(None, description="Payment reference when marking a manual order as paid")
    reason: Optional[str] = None


class TrackingBody(BaseModel):
    tracking_number: str
    box_size: Optional[str] = None
    box_cost: Optional[Decimal] = Field(None, ge=0)
    label_url: Optional[str] = None


# Status fields only change through StatusUpdate
class OrderPatch(BaseModel):
    notes: Optional[str] = None
    shipping_method: Optional[str] = None
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    box_size: Optional[str] = None
    box_cost: Optional[Decimal] = Field(None, ge=0)
    label_url: Optional[str] = None

    class Config:
        extra = "forbid"


class PrintBody(BaseModel):
    printed_by: Optional[str] = None


class OrderEmailBody(BaseModel):
    type: Literal["confirmation", "receipt", "shipped", "status_update"]


class OrderCreated(BaseModel):
    order: OrderOut
    customer_id: str