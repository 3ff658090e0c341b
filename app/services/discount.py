# app/services/discount.py

import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.crud import discount as crud_discount
from app.models.discount import Discount
from app.schemas.discount import DiscountValidation
from app.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


def resolve_discount(db: Session, org_id: str, code: str | None) -> Optional[Discount]:
    """Code string -> discount row, or None."""
    if not code:
        return None
    return crud_discount.get_discount_by_code(db, org_id, code)


def check_discount(discount: Optional[Discount], code: str, now: datetime | None = None) -> DiscountValidation:
    """Evaluates status, validity window and usage limit. Never raises."""
    now = now or utcnow()
    if discount is None:
        return DiscountValidation(valid=False, code=code, reason="Discount code not found")

    reason = None
    if discount.status != "active":
        reason = "Discount code is not active"
    elif discount.starts_at and as_utc(discount.starts_at) > now:
        reason = "Discount code is not valid yet"
    elif discount.expires_at and as_utc(discount.expires_at) <= now:
        reason = "Discount code has expired"
    elif discount.max_uses is not None and discount.used_count >= discount.max_uses:
        reason = "Discount code has reached its usage limit"

    return DiscountValidation(
        valid=reason is None,
        code=discount.code,
        reason=reason,
        type=discount.type,
        value=discount.value,
        rep_id=discount.rep_id,
    )


def validate_discount(db: Session, org_id: str, code: str, now: datetime | None = None) -> DiscountValidation:
    """
    Validation for the checkout surface: raises 400 for unusable codes.
    """
    result = check_discount(resolve_discount(db, org_id, code), code, now=now)
    if not result.valid:
        logger.warning(f"Discount validation failed for '{code}' in org {org_id}: {result.reason}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.reason)
    logger.info(f"Discount '{code}' validated for org {org_id}.")
    return result


def record_usage(db: Session, org_id: str, code: str | None) -> Optional[Discount]:
    """
    Counts one use of the code when it is currently valid.
    Returns the discount when the usage was recorded. Requires an external commit.
    """
    discount = resolve_discount(db, org_id, code)
    if not check_discount(discount, code or "").valid:
        return None
    if not crud_discount.increment_usage(db, discount.id):
        logger.warning(f"Discount '{code}' hit its usage limit concurrently.")
        return None
    return discount
