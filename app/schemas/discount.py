# app/schemas/discount.py
from pydantic import BaseModel
from typing import Optional
from decimal import Decimal


class DiscountValidateRequest(BaseModel):
    org_id: str
    code: str
    event_id: Optional[int] = None


class DiscountValidation(BaseModel):
    valid: bool
    code: str
    reason: Optional[str] = None
    type: Optional[str] = None
    value: Optional[Decimal] = None
    # Owner of the code, when it belongs to a rep
    rep_id: Optional[int] = None
