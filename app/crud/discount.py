# app/crud/discount.py
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.discount import Discount


def get_discount_by_code(db: Session, org_id: str, code: str) -> Optional[Discount]:
    """Case-insensitive, whitespace-trimmed lookup within the tenant."""
    normalized = (code or "").strip().lower()
    if not normalized:
        return None
    return db.query(Discount).filter(
        Discount.org_id == org_id, func.lower(Discount.code) == normalized
    ).first()


def increment_usage(db: Session, discount_id: int) -> bool:
    """
    Atomic `used_count + 1`, guarded by max_uses.
    Returns False when the code is used up.
    """
    updated = db.query(Discount).filter(
        Discount.id == discount_id,
        (Discount.max_uses.is_(None)) | (Discount.used_count < Discount.max_uses),
    ).update({Discount.used_count: Discount.used_count + 1}, synchronize_session=False)
    return updated == 1
