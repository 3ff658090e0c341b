# app/services/rep_points.py

import logging
from typing import List, Optional
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.tasks import best_effort
from app.crud import notification as crud_notification
from app.crud import rep as crud_rep
from app.models.rep import Rep
from app.schemas.email import RepEmail
from app.schemas.rep import PointsLedgerEntry, RepPointsHistory
from app.schemas.settings import RepProgramSettings
from app.services import email as email_service
from app.services import settings as settings_service

logger = logging.getLogger(__name__)


def calculate_level(balance: int, thresholds: List[int]) -> int:
    """
    Level 1 plus one for every threshold reached, in order.
    Stops at the first threshold not met; capped at len(thresholds) + 1.
    """
    level = 1
    for threshold in thresholds:
        if balance >= threshold:
            level += 1
        else:
            break
    return level


async def award_points(
    db: Session,
    redis: Redis,
    *,
    org_id: str,
    rep_id: int,
    points: int,
    source_type: str,
    description: str,
    currency: int = 0,
    source_id: str | None = None,
    created_by: str | None = None,
) -> Optional[int]:
    """
    Applies a signed delta to a rep: ledger row first, then balance + level together.
    Returns the new balance, or None on any failure (never raises).
    """
    rep_settings = await settings_service.get_rep_settings(db, redis, org_id)

    try:
        # --- Step 1: lock the rep and read the current balance ---
        rep = crud_rep.get_rep_for_update(db, org_id, rep_id)
        if rep is None:
            logger.warning(f"award_points: rep {rep_id} not found in org {org_id}.")
            db.rollback()
            return None

        old_level = rep.level
        new_balance = rep.points_balance + points
        new_currency = rep.currency_balance + currency

        # --- Step 2: immutable ledger row ---
        crud_rep.create_ledger_entry(
            db, org_id=org_id, rep_id=rep_id, points=points, currency=currency,
            balance_after=new_balance, source_type=source_type, source_id=source_id,
            description=description, created_by=created_by,
        )
        db.flush()

        # --- Step 3: balance and level move together ---
        new_level = calculate_level(new_balance, rep_settings.level_thresholds)
        rep.points_balance = new_balance
        rep.currency_balance = new_currency
        rep.level = new_level
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Failed to apply {points} points ({source_type}) to rep {rep_id}", exc_info=True)
        return None

    logger.info(
        f"Rep {rep_id}: {points:+d} points ({source_type}, source {source_id}). "
        f"Balance {new_balance}, level {old_level} -> {new_level}."
    )

    # --- Step 4: level-up side effects ---
    if new_level > old_level and points > 0:
        await best_effort(
            _notify_level_up(db, redis, rep, new_level, rep_settings),
            f"level-up notification for rep {rep_id}",
        )

    return new_balance


async def deduct_points(
    db: Session,
    redis: Redis,
    *,
    org_id: str,
    rep_id: int,
    points: int,
    source_type: str,
    description: str,
    currency: int = 0,
    source_id: str | None = None,
    created_by: str | None = None,
) -> Optional[int]:
    """award_points with the sign forced negative. The balance may go below zero."""
    return await award_points(
        db, redis, org_id=org_id, rep_id=rep_id, points=-abs(points),
        currency=-abs(currency), source_type=source_type, source_id=source_id,
        description=description, created_by=created_by,
    )


async def recompute_level(db: Session, redis: Redis, org_id: str, rep_id: int) -> Optional[int]:
    """Re-derives the cached level from the current balance."""
    rep_settings = await settings_service.get_rep_settings(db, redis, org_id)
    rep = crud_rep.get_rep_for_update(db, org_id, rep_id)
    if rep is None:
        return None
    rep.level = calculate_level(rep.points_balance, rep_settings.level_thresholds)
    db.commit()
    return rep.level


async def get_points_history(
    db: Session, redis: Redis, org_id: str, rep: Rep, skip: int = 0, limit: int = 50
) -> RepPointsHistory:
    """Balance, level and the ledger (newest first) for one rep."""
    rep_settings = await settings_service.get_rep_settings(db, redis, org_id)
    entries = crud_rep.get_ledger_entries(db, org_id, rep.id, skip=skip, limit=limit)
    return RepPointsHistory(
        rep_id=rep.id,
        balance=rep.points_balance,
        currency_balance=rep.currency_balance,
        level=rep.level,
        level_name=rep_settings.level_name(rep.level),
        total=crud_rep.count_ledger_entries(db, org_id, rep.id),
        entries=[PointsLedgerEntry.model_validate(e) for e in entries],
    )


async def _notify_level_up(db: Session, redis: Redis, rep: Rep, new_level: int, rep_settings: RepProgramSettings):
    level_name = rep_settings.level_name(new_level)
    crud_notification.create_notification(
        db=db,
        org_id=rep.org_id,
        rep_id=rep.id,
        type="level_up",
        title=f"Level up! You're now {level_name}",
        body=f"You reached level {new_level}.",
        link="/rep/progress",
        meta={"level": new_level, "level_name": level_name},
    )
    branding = await settings_service.get_email_settings(db, redis, rep.org_id)
    await email_service.send_rep_email(
        RepEmail(
            org_id=rep.org_id, to=rep.email, first_name=rep.first_name,
            kind="level_up", data={"level": new_level, "level_name": level_name},
        ),
        branding,
    )
