# app/schemas/checkout.py
from pydantic import BaseModel, Field
from typing import Optional


class CheckoutConfirmRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)


class CheckoutErrorDetail(BaseModel):
    """Body of a failed confirmation; payment_captured=True needs operator follow-up."""
    error: str
    payment_captured: bool = False
    payment_ref: Optional[str] = None
