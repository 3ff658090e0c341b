# app/schemas/email.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
from decimal import Decimal


class EmailTicket(BaseModel):
    ticket_code: str
    ticket_type_name: str = "Ticket"
    merch_size: Optional[str] = None
    merch_name: Optional[str] = None


class OrderConfirmationEmail(BaseModel):
    org_id: str
    to: str
    first_name: Optional[str] = None
    order_number: str
    total: Decimal
    currency: str
    event_name: str
    venue_name: Optional[str] = None
    date_start: Optional[datetime] = None
    doors_time: Optional[str] = None
    tickets: List[EmailTicket] = Field(default_factory=list)
    vat_amount: Optional[Decimal] = None
    vat_rate: Optional[Decimal] = None


class CartEmailItem(BaseModel):
    name: str
    qty: int
    price: Decimal


class CartRecoveryEmail(BaseModel):
    org_id: str
    to: str
    first_name: Optional[str] = None
    event_name: str
    event_slug: Optional[str] = None
    venue_name: Optional[str] = None
    date_start: Optional[datetime] = None
    items: List[CartEmailItem] = Field(default_factory=list)
    subtotal: Decimal
    currency: str
    step_index: int
    subject: Optional[str] = None
    preview_text: Optional[str] = None
    discount_code: Optional[str] = None
    discount_percent: Optional[int] = None
    recovery_url: str
    unsubscribe_url: str


class AnnouncementEmail(BaseModel):
    org_id: str
    to: str
    first_name: Optional[str] = None
    # 1 confirmation, 2 hype, 3 tickets live, 4 final reminder
    step: Literal[1, 2, 3, 4]
    event_name: str
    event_slug: Optional[str] = None
    venue_name: Optional[str] = None
    date_start: Optional[datetime] = None
    tickets_live_at: Optional[datetime] = None
    custom_subject: Optional[str] = None
    custom_heading: Optional[str] = None
    custom_body: Optional[str] = None
    event_url: str
    unsubscribe_url: str


class RepEmail(BaseModel):
    org_id: str
    to: str
    first_name: Optional[str] = None
    kind: Literal["sale", "level_up", "reward_unlocked"]
    data: Dict[str, Any] = Field(default_factory=dict)
