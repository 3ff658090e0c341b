# app/schemas/cart.py
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from decimal import Decimal

from app.schemas.order import OrderLineItem

# Checkout details captured before payment
class CheckoutCapture(BaseModel):
    org_id: str
    event_id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    items: List[OrderLineItem] = Field(..., min_length=1)
    discount_code: Optional[str] = None
    marketing_consent: Optional[bool] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class CartCaptureResponse(BaseModel):
    cart_token: str
    status: str
    subtotal: Decimal
    currency: str
