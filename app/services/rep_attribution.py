# app/services/rep_attribution.py

import logging
from decimal import Decimal
from typing import Optional

from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.tasks import best_effort
from app.crud import notification as crud_notification
from app.crud import order as crud_order
from app.crud import rep as crud_rep
from app.models.event import Event
from app.models.order import Order
from app.models.rep import Rep, RepEvent, RepMilestone
from app.schemas.email import RepEmail
from app.schemas.rep import AttributionResult, OrderRepAttribution, ReversalResult
from app.services import email as email_service
from app.services import rep_points
from app.services import settings as settings_service
from app.services.discount import resolve_discount

logger = logging.getLogger(__name__)


def _plural(count: int) -> str:
    return f"{count} ticket{'s' if count != 1 else ''}"


def _metric_value(rep: Rep, rep_event: Optional[RepEvent], milestone: RepMilestone) -> Decimal:
    """Current value of the metric a milestone tracks; event-scoped ones use the per-event aggregate."""
    if milestone.milestone_type == "points":
        return Decimal(rep.points_balance or 0)
    if milestone.event_id is not None:
        if rep_event is None:
            return Decimal("0")
        if milestone.milestone_type == "sales_count":
            return Decimal(rep_event.sales_count or 0)
        return Decimal(str(rep_event.revenue or 0))
    if milestone.milestone_type == "sales_count":
        return Decimal(rep.total_sales or 0)
    if milestone.milestone_type == "revenue":
        return Decimal(str(rep.total_revenue or 0))
    logger.warning(f"Unknown milestone type '{milestone.milestone_type}' on milestone {milestone.id}.")
    return Decimal("0")


def _get_rep_event(db: Session, rep_id: int, event_id: int | None) -> Optional[RepEvent]:
    if event_id is None:
        return None
    return db.query(RepEvent).filter(RepEvent.rep_id == rep_id, RepEvent.event_id == event_id).first()


# --- Attribution ---

async def attribute_sale_to_rep(
    db: Session,
    redis: Redis,
    *,
    org_id: str,
    order_id: int,
    event_id: int,
    discount_code: str | None,
    order_total: Decimal,
    ticket_count: int,
) -> Optional[AttributionResult]:
    """
    Credits a completed order to the rep who owns its discount code.
    Points are the only mandatory step; everything after is best-effort.
    Never raises: attribution must not affect the order.
    """
    try:
        if not discount_code:
            return None

        # --- Step 1: code -> rep ---
        discount = resolve_discount(db, org_id, discount_code)
        if discount is None or discount.rep_id is None:
            return None
        rep = crud_rep.get_rep(db, org_id, discount.rep_id)
        if rep is None or rep.status != "active":
            logger.info(f"Discount '{discount_code}' belongs to rep {discount.rep_id}, who is not active. Skipping.")
            return None

        rep_settings = await settings_service.get_rep_settings(db, redis, org_id)
        if not rep_settings.enabled:
            return None

        order = crud_order.get_order(db, org_id, order_id)
        if order is None:
            logger.warning(f"Attribution: order {order_id} not found in org {org_id}.")
            return None
        if (order.meta or {}).get("rep_id") or crud_rep.get_entry_by_source(db, org_id, "sale", str(order_id)):
            logger.info(f"Order {order_id} already attributed. Skipping.")
            return None

        # --- Step 2: points ---
        points = rep_settings.points_per_sale * ticket_count
        currency = rep_settings.currency_per_sale * ticket_count
        new_balance = await rep_points.award_points(
            db, redis,
            org_id=org_id,
            rep_id=rep.id,
            points=points,
            currency=currency,
            source_type="sale",
            source_id=str(order_id),
            description=f"Sale: {_plural(ticket_count)} ({order.currency} {Decimal(str(order_total)):.2f})",
        )
        if new_balance is None:
            logger.error(f"Attribution of order {order_id} to rep {rep.id} failed: points were not awarded.")
            return None
    except Exception:
        db.rollback()
        logger.error(f"Attribution of order {order_id} failed", exc_info=True)
        return None

    rep_id = rep.id
    revenue = Decimal(str(order_total))

    # --- Step 3: independent side effects ---
    await best_effort(
        _update_aggregates(db, rep_id, event_id, ticket_count, revenue),
        f"rep totals for rep {rep_id}",
    )
    await best_effort(
        _stamp_order(db, org_id, order_id, rep_id, points, currency),
        f"attribution stamp on order {order_id}",
    )
    unlocked = await best_effort(
        check_milestones(db, org_id, rep_id, event_id),
        f"milestone check for rep {rep_id}",
    )
    await best_effort(
        _notify_sale(db, redis, org_id, rep_id, order_id, event_id, ticket_count, revenue, points, currency,
                     rep_settings.currency_name),
        f"sale notification for rep {rep_id}",
    )

    logger.info(f"Sale attributed to rep {rep_id}: order {order_id}, {_plural(ticket_count)}, +{points} points, +{currency} currency.")
    return AttributionResult(
        rep_id=rep_id,
        points_awarded=points,
        currency_awarded=currency,
        new_balance=new_balance,
        milestones_unlocked=unlocked or 0,
    )


async def _update_aggregates(db: Session, rep_id: int, event_id: int, ticket_count: int, revenue: Decimal):
    try:
        crud_rep.increment_rep_totals(db, rep_id, ticket_count, revenue)
        if not crud_rep.increment_rep_event(db, rep_id, event_id, ticket_count, revenue):
            logger.info(f"Rep {rep_id} has no assignment for event {event_id}; per-event totals unchanged.")
        db.commit()
    except Exception:
        db.rollback()
        raise


async def _stamp_order(db: Session, org_id: str, order_id: int, rep_id: int, points: int, currency: int):
    try:
        order = crud_order.get_order(db, org_id, order_id)
        # JSON column: assign a new dict so the change is tracked
        order.meta = {
            **(order.meta or {}),
            "rep_id": rep_id,
            "rep_points_awarded": points,
            "rep_currency_awarded": currency,
        }
        db.commit()
    except Exception:
        db.rollback()
        raise


async def _notify_sale(
    db: Session, redis: Redis, org_id: str, rep_id: int, order_id: int, event_id: int,
    ticket_count: int, revenue: Decimal, points: int, currency: int, currency_name: str,
):
    crud_notification.create_notification(
        db=db,
        org_id=org_id,
        rep_id=rep_id,
        type="sale_attributed",
        title="Sale incoming!",
        body=f"{_plural(ticket_count)} sold, +{points} XP +{currency} {currency_name}",
        link="/rep/sales",
        meta={"order_id": order_id, "ticket_count": ticket_count, "order_total": str(revenue)},
    )
    rep = crud_rep.get_rep(db, org_id, rep_id)
    event = db.query(Event).filter(Event.org_id == org_id, Event.id == event_id).first()
    branding = await settings_service.get_email_settings(db, redis, org_id)
    await email_service.send_rep_email(
        RepEmail(
            org_id=org_id, to=rep.email, first_name=rep.first_name, kind="sale",
            data={
                "ticket_count": ticket_count,
                "order_total": str(revenue),
                "points": points,
                "event_name": event.name if event else None,
            },
        ),
        branding,
    )


async def check_milestones(db: Session, org_id: str, rep_id: int, event_id: int | None) -> int:
    """
    Auto-claims every milestone the rep now meets and has no live claim for.
    Returns the number of milestones unlocked.
    """
    rep = crud_rep.get_rep(db, org_id, rep_id)
    if rep is None:
        return 0
    db.refresh(rep)
    rep_event = _get_rep_event(db, rep_id, event_id)

    milestones = crud_rep.get_milestones_for_event(db, org_id, event_id)
    claimed_ids = crud_rep.get_active_milestone_claim_ids(db, rep_id)

    unlocked = []
    try:
        for milestone in milestones:
            if milestone.id in claimed_ids:
                continue
            if _metric_value(rep, rep_event, milestone) < Decimal(str(milestone.threshold_value)):
                continue
            crud_rep.create_milestone_claim(db, org_id, rep_id, milestone)
            crud_rep.increment_reward_claimed(db, milestone.reward_id)
            claimed_ids.add(milestone.id)
            unlocked.append(milestone)
        db.commit()
    except Exception:
        db.rollback()
        raise

    for milestone in unlocked:
        logger.info(f"Milestone achieved: rep={rep_id}, milestone='{milestone.title}'.")
        reward_name = milestone.reward.name if milestone.reward else "Reward"
        await best_effort(
            _notify_reward_unlocked(db, org_id, rep_id, milestone, reward_name),
            f"reward notification for rep {rep_id}",
        )
    return len(unlocked)


async def _notify_reward_unlocked(db: Session, org_id: str, rep_id: int, milestone: RepMilestone, reward_name: str):
    crud_notification.create_notification(
        db=db,
        org_id=org_id,
        rep_id=rep_id,
        type="reward_unlocked",
        title="Reward Unlocked!",
        body=f"{reward_name}: {milestone.title}",
        link="/rep/rewards",
        meta={"reward_id": milestone.reward_id, "milestone_id": milestone.id},
    )


# --- Reversal ---

def _attributed_amounts(db: Session, org_id: str, order: Order) -> Optional[tuple[int, int, int]]:
    """(rep_id, points, currency) the order was credited with, or None."""
    meta = order.meta or {}
    sale_entry = crud_rep.get_entry_by_source(db, org_id, "sale", str(order.id))
    rep_id = meta.get("rep_id") or (sale_entry.rep_id if sale_entry else None)
    if not rep_id:
        return None

    points = meta.get("rep_points_awarded")
    currency = meta.get("rep_currency_awarded")
    if points is None and sale_entry is not None:
        points = sale_entry.points
    if currency is None and sale_entry is not None:
        currency = sale_entry.currency
    return int(rep_id), int(points or 0), int(currency or 0)


def get_order_rep_attribution(db: Session, org_id: str, order_id: int) -> Optional[OrderRepAttribution]:
    """What a refund of this order would take back from its rep."""
    order = crud_order.get_order(db, org_id, order_id)
    if order is None:
        return None
    amounts = _attributed_amounts(db, org_id, order)
    if amounts is None:
        return None
    rep_id, points, currency = amounts
    rep = crud_rep.get_rep(db, org_id, rep_id)
    return OrderRepAttribution(
        rep_id=rep_id,
        rep_name=(rep.display_name or rep.first_name) if rep else None,
        points_awarded=points,
        currency_awarded=currency,
        already_reversed=crud_rep.get_entry_by_source(db, org_id, "refund", str(order_id)) is not None,
    )


async def reverse_rep_attribution(db: Session, redis: Redis, *, org_id: str, order_id: int) -> Optional[ReversalResult]:
    """
    Takes back exactly what an order's attribution awarded.
    Ledger row, balances, aggregates and claim cancellations commit together.
    """
    order = crud_order.get_order(db, org_id, order_id)
    if order is None:
        return None

    amounts = _attributed_amounts(db, org_id, order)
    if amounts is None:
        return ReversalResult(status="skipped", reason="No rep attribution")
    if crud_rep.get_entry_by_source(db, org_id, "refund", str(order_id)):
        return ReversalResult(status="skipped", reason="Already reversed")
    rep_id, points, currency = amounts

    ticket_count = crud_order.get_order_ticket_count(db, order_id)
    revenue = Decimal(str(order.total or 0))

    try:
        # --- Step 1: lock the rep ---
        rep = crud_rep.get_rep_for_update(db, org_id, rep_id)
        if rep is None:
            db.rollback()
            return ReversalResult(status="skipped", reason="Rep not found", rep_id=rep_id)
        # Re-check under the lock: a concurrent refund may have just reversed it
        if crud_rep.get_entry_by_source(db, org_id, "refund", str(order_id)):
            db.rollback()
            return ReversalResult(status="skipped", reason="Already reversed", rep_id=rep_id)

        # --- Step 2: refund ledger row and balances, no floor ---
        new_balance = rep.points_balance - points
        crud_rep.create_ledger_entry(
            db, org_id=org_id, rep_id=rep_id, points=-points, currency=-currency,
            balance_after=new_balance, source_type="refund", source_id=str(order_id),
            description=f"Refund: order refunded ({_plural(ticket_count)})",
        )
        rep.points_balance = new_balance
        rep.currency_balance = rep.currency_balance - currency

        # --- Step 3: aggregates, floored at zero ---
        crud_rep.decrement_rep_totals(db, rep_id, ticket_count, revenue)
        crud_rep.decrement_rep_event(db, rep_id, order.event_id, ticket_count, revenue)
        db.flush()
        db.refresh(rep)

        # --- Step 4: unfulfilled milestone claims that no longer hold ---
        rep_event = _get_rep_event(db, rep_id, order.event_id)
        cancelled = 0
        for claim in crud_rep.get_open_milestone_claims(db, org_id, rep_id):
            milestone = claim.milestone
            if milestone is None:
                continue
            if milestone.event_id is not None and milestone.event_id != order.event_id:
                continue
            if _metric_value(rep, rep_event, milestone) >= Decimal(str(milestone.threshold_value)):
                continue
            claim.status = "cancelled"
            claim.notes = "Auto-cancelled: refund dropped below threshold"
            crud_rep.decrement_reward_claimed(db, claim.reward_id)
            cancelled += 1

        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Failed to reverse rep attribution for order {order_id}", exc_info=True)
        raise

    # --- Step 5: level follows the new balance ---
    new_level = await rep_points.recompute_level(db, redis, org_id, rep_id)

    logger.info(
        f"Reversed attribution of order {order_id}: rep {rep_id} -{points} points, -{currency} currency, "
        f"{cancelled} claim(s) cancelled. Balance {new_balance}, level {new_level}."
    )
    return ReversalResult(
        status="reversed",
        rep_id=rep_id,
        points_deducted=points,
        currency_deducted=currency,
        new_balance=new_balance,
        new_level=new_level,
        claims_cancelled=cancelled,
    )
