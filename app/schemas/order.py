# app/schemas/order.py
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal


# One line of a checkout
class OrderLineItem(BaseModel):
    ticket_type_id: int
    qty: int = Field(..., ge=1, le=100)
    merch_size: Optional[str] = None


class OrderCustomer(BaseModel):
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class OrderPayment(BaseModel):
    method: str
    # Unique reference (PaymentIntent id, TEST-xxx), idempotency anchor
    ref: str
    # Amount charged in major units; fees = charged - subtotal when present
    total_charged: Optional[Decimal] = None


class OrderVat(BaseModel):
    amount: Decimal
    rate: Decimal
    inclusive: bool
    vat_number: Optional[str] = None


class AdminOrderCreate(BaseModel):
    """Admin / test path for creating an order without a payment provider."""
    event_id: int
    items: List[OrderLineItem] = Field(..., min_length=1)
    customer: OrderCustomer
    payment_method: str = "test"
    payment_ref: Optional[str] = None
    total_charged: Optional[Decimal] = None
    vat: Optional[OrderVat] = None
    discount_code: Optional[str] = None
    send_email: bool = True


class MerchLineItem(BaseModel):
    collection_item_id: int
    qty: int = Field(..., ge=1, le=50)
    merch_size: Optional[str] = None


class TicketRead(BaseModel):
    id: int
    ticket_code: str
    ticket_type_id: int
    holder_first_name: Optional[str] = None
    holder_last_name: Optional[str] = None
    holder_email: Optional[str] = None
    merch_size: Optional[str] = None
    status: str
    scanned_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderItemRead(BaseModel):
    id: int
    ticket_type_id: int
    qty: int
    unit_price: Decimal
    merch_size: Optional[str] = None

    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    id: int
    order_number: str
    event_id: int
    customer_id: int
    status: str
    subtotal: Decimal
    fees: Decimal
    total: Decimal
    currency: str
    payment_method: str
    payment_ref: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    order: OrderRead
    tickets: List[TicketRead]
    customer_id: int
    # True when an existing order was returned for the same payment reference
    existing: bool = False


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RepReversalRead(BaseModel):
    status: str
    reason: Optional[str] = None
    rep_id: Optional[int] = None
    points_deducted: int = 0
    currency_deducted: int = 0
    new_balance: Optional[int] = None
    new_level: Optional[int] = None
    claims_cancelled: int = 0


class RefundResponse(BaseModel):
    order: OrderRead
    tickets_cancelled: int
    stripe_refund_id: Optional[str] = None
    rep_reversal: Optional[RepReversalRead] = None
