# app/crud/rep.py

from decimal import Decimal
from typing import List, Optional
from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from app.models.rep import (
    Rep, RepEvent, RepMilestone, RepPointsLog, RepReward, RepRewardClaim,
)

# --- Reps ---

def get_rep(db: Session, org_id: str, rep_id: int) -> Optional[Rep]:
    return db.query(Rep).filter(Rep.org_id == org_id, Rep.id == rep_id).first()


def get_rep_for_update(db: Session, org_id: str, rep_id: int) -> Optional[Rep]:
    """Row lock held until the end of the transaction."""
    return db.query(Rep).filter(
        Rep.org_id == org_id, Rep.id == rep_id
    ).with_for_update().first()


def increment_rep_totals(db: Session, rep_id: int, sales: int, revenue: Decimal) -> None:
    """Atomic increment of the lifetime aggregates."""
    db.query(Rep).filter(Rep.id == rep_id).update({
        Rep.total_sales: Rep.total_sales + sales,
        Rep.total_revenue: Rep.total_revenue + revenue,
    }, synchronize_session=False)


def decrement_rep_totals(db: Session, rep_id: int, sales: int, revenue: Decimal) -> None:
    """Atomic decrement, floored at zero."""
    db.query(Rep).filter(Rep.id == rep_id).update({
        Rep.total_sales: case((Rep.total_sales - sales < 0, 0), else_=Rep.total_sales - sales),
        Rep.total_revenue: case((Rep.total_revenue - revenue < 0, 0), else_=Rep.total_revenue - revenue),
    }, synchronize_session=False)


def increment_rep_event(db: Session, rep_id: int, event_id: int, sales: int, revenue: Decimal) -> bool:
    """Returns False when the rep is not assigned to the event."""
    updated = db.query(RepEvent).filter(
        RepEvent.rep_id == rep_id, RepEvent.event_id == event_id
    ).update({
        RepEvent.sales_count: RepEvent.sales_count + sales,
        RepEvent.revenue: RepEvent.revenue + revenue,
    }, synchronize_session=False)
    return updated == 1


def decrement_rep_event(db: Session, rep_id: int, event_id: int, sales: int, revenue: Decimal) -> bool:
    updated = db.query(RepEvent).filter(
        RepEvent.rep_id == rep_id, RepEvent.event_id == event_id
    ).update({
        RepEvent.sales_count: case((RepEvent.sales_count - sales < 0, 0), else_=RepEvent.sales_count - sales),
        RepEvent.revenue: case((RepEvent.revenue - revenue < 0, 0), else_=RepEvent.revenue - revenue),
    }, synchronize_session=False)
    return updated == 1

# --- Points ledger ---

def create_ledger_entry(
    db: Session,
    org_id: str,
    rep_id: int,
    points: int,
    balance_after: int,
    source_type: str,
    description: str,
    currency: int = 0,
    source_id: str | None = None,
    created_by: str | None = None,
) -> RepPointsLog:
    """
    Adds an immutable ledger row to the session.
    Requires an external db.flush() / db.commit().
    """
    entry = RepPointsLog(
        org_id=org_id,
        rep_id=rep_id,
        points=points,
        currency=currency,
        balance_after=balance_after,
        source_type=source_type,
        source_id=source_id,
        description=description,
        created_by=created_by,
    )
    db.add(entry)
    return entry


def get_ledger_balance(db: Session, org_id: str, rep_id: int) -> int:
    """Sum of all deltas, the source of truth for points_balance."""
    balance = db.query(func.sum(RepPointsLog.points)).filter(
        RepPointsLog.org_id == org_id, RepPointsLog.rep_id == rep_id
    ).scalar()
    return int(balance or 0)


def get_ledger_entries(db: Session, org_id: str, rep_id: int, skip: int = 0, limit: int = 50) -> List[RepPointsLog]:
    """Newest first."""
    return db.query(RepPointsLog).filter(
        RepPointsLog.org_id == org_id, RepPointsLog.rep_id == rep_id
    ).order_by(RepPointsLog.id.desc()).offset(skip).limit(limit).all()


def count_ledger_entries(db: Session, org_id: str, rep_id: int) -> int:
    return db.query(RepPointsLog).filter(
        RepPointsLog.org_id == org_id, RepPointsLog.rep_id == rep_id
    ).count()


def get_entry_by_source(db: Session, org_id: str, source_type: str, source_id: str) -> Optional[RepPointsLog]:
    return db.query(RepPointsLog).filter_by(
        org_id=org_id, source_type=source_type, source_id=source_id
    ).order_by(RepPointsLog.id.asc()).first()

# --- Milestones and claims ---

def get_milestones_for_event(db: Session, org_id: str, event_id: int | None) -> List[RepMilestone]:
    """Global milestones plus the ones scoped to this event."""
    scope = RepMilestone.event_id.is_(None)
    if event_id is not None:
        scope = or_(scope, RepMilestone.event_id == event_id)
    return db.query(RepMilestone).filter(RepMilestone.org_id == org_id, scope).order_by(RepMilestone.id).all()


def get_active_milestone_claim_ids(db: Session, rep_id: int) -> set[int]:
    rows = db.query(RepRewardClaim.milestone_id).filter(
        RepRewardClaim.rep_id == rep_id,
        RepRewardClaim.claim_type == "milestone",
        RepRewardClaim.status != "cancelled",
        RepRewardClaim.milestone_id.isnot(None),
    ).all()
    return {milestone_id for milestone_id, in rows}


def create_milestone_claim(db: Session, org_id: str, rep_id: int, milestone: RepMilestone) -> RepRewardClaim:
    claim = RepRewardClaim(
        org_id=org_id,
        rep_id=rep_id,
        reward_id=milestone.reward_id,
        claim_type="milestone",
        milestone_id=milestone.id,
        points_spent=0,
        status="claimed",
    )
    db.add(claim)
    return claim


def get_open_milestone_claims(db: Session, org_id: str, rep_id: int) -> List[RepRewardClaim]:
    """Claimed but not yet fulfilled milestone claims."""
    return db.query(RepRewardClaim).filter(
        RepRewardClaim.org_id == org_id,
        RepRewardClaim.rep_id == rep_id,
        RepRewardClaim.claim_type == "milestone",
        RepRewardClaim.status == "claimed",
    ).all()


def increment_reward_claimed(db: Session, reward_id: int) -> None:
    db.query(RepReward).filter(RepReward.id == reward_id).update(
        {RepReward.total_claimed: RepReward.total_claimed + 1}, synchronize_session=False
    )


def decrement_reward_claimed(db: Session, reward_id: int) -> None:
    db.query(RepReward).filter(
        RepReward.id == reward_id, RepReward.total_claimed > 0
    ).update({RepReward.total_claimed: RepReward.total_claimed - 1}, synchronize_session=False)
