# app/schemas/rep.py
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime
from decimal import Decimal

PointsSourceType = Literal["sale", "quest", "manual", "reward_spend", "revocation", "refund"]


class PointsLedgerEntry(BaseModel):
    id: int
    points: int
    currency: int
    balance_after: int
    source_type: str
    source_id: Optional[str] = None
    description: str
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RepPointsHistory(BaseModel):
    rep_id: int
    balance: int
    currency_balance: int
    level: int
    level_name: str
    total: int
    entries: List[PointsLedgerEntry]


class ManualPointsAdjustment(BaseModel):
    """[ADMIN] Award (positive) or deduct (negative) points by hand."""
    points: int = Field(..., description="Signed delta; negative values deduct.")
    currency: int = 0
    description: str = Field(..., min_length=1, max_length=255)
    source_type: PointsSourceType = "manual"
    created_by: Optional[str] = None


class PointsAdjustmentResult(BaseModel):
    rep_id: int
    new_balance: int
    level: int


class AttributionResult(BaseModel):
    rep_id: int
    points_awarded: int
    currency_awarded: int
    new_balance: int
    milestones_unlocked: int = 0


class ReversalResult(BaseModel):
    # 'reversed' or 'skipped'
    status: Literal["reversed", "skipped"]
    reason: Optional[str] = None
    rep_id: Optional[int] = None
    points_deducted: int = 0
    currency_deducted: int = 0
    new_balance: Optional[int] = None
    new_level: Optional[int] = None
    claims_cancelled: int = 0


class OrderRepAttribution(BaseModel):
    """Preview shown before refunding an attributed order."""
    rep_id: int
    rep_name: Optional[str] = None
    points_awarded: int
    currency_awarded: int
    already_reversed: bool


class RepRead(BaseModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    status: str
    points_balance: int
    currency_balance: int
    level: int
    total_sales: int
    total_revenue: Decimal

    class Config:
        from_attributes = True
