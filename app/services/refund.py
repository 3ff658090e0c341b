# app/services/refund.py

import logging
from datetime import datetime
from typing import Optional

import stripe
from fastapi import HTTPException, status
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.clients.stripe_client import is_already_refunded_error, stripe_client
from app.core.tasks import best_effort
from app.crud import inventory as crud_inventory
from app.crud import order as crud_order
from app.schemas.order import OrderRead, RefundResponse, RepReversalRead
from app.services import rep_attribution
from app.services.order import recompute_customer_stats
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


async def refund_order(
    db: Session,
    redis: Redis,
    *,
    org_id: str,
    order_id: int,
    reason: Optional[str] = None,
    now: datetime | None = None,
) -> RefundResponse:
    """
    Refunds an order and undoes everything the sale caused:
    money, tickets, inventory, customer stats, then the rep attribution.

    The order is claimed with a conditional 'completed' -> 'refunding' update
    before anything else, so concurrent refunds of one order cannot both proceed.
    """
    now = now or utcnow()
    order = crud_order.get_order(db, org_id, order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    if not crud_order.transition_order_status(db, org_id, order.id, "completed", "refunding"):
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order is already refunded")
    db.commit()

    # --- Step 1: money back through the payment provider ---
    stripe_refund_id = None
    if order.payment_method == "stripe" and order.payment_ref:
        try:
            refund = await stripe_client.create_refund(order.payment_ref, reason=reason)
            stripe_refund_id = refund.id
        except stripe.StripeError as e:
            if is_already_refunded_error(e):
                logger.warning(f"Order {order.order_number}: payment {order.payment_ref} was already refunded in Stripe.")
            else:
                _release_claim(db, org_id, order.id)
                raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Stripe refund failed: {e}")
        except Exception:
            _release_claim(db, org_id, order.id)
            raise

    # --- Step 2: order, tickets, inventory, customer in one transaction ---
    try:
        crud_order.transition_order_status(
            db, org_id, order.id, "refunding", "refunded", refund_reason=reason, refunded_at=now,
        )
        tickets_cancelled = crud_order.cancel_order_tickets(db, order.id)
        for item in crud_order.get_order_items(db, order.id):
            if not crud_inventory.decrement_sold(db, item.ticket_type_id, item.qty):
                logger.error(f"Refund of {order.order_number}: sold counter not updated for ticket type {item.ticket_type_id}.")
        # Stats are rebuilt from the orders as stored, so pending changes go out first
        db.flush()
        recompute_customer_stats(db, org_id, order.customer_id)
        db.commit()
    except Exception:
        db.rollback()
        logger.critical(f"Order {order_id} was refunded with the provider but could not be marked refunded", exc_info=True)
        raise

    db.refresh(order)
    logger.info(f"Order {order.order_number} refunded: {tickets_cancelled} ticket(s) cancelled.")

    # --- Step 3: take back the rep's points ---
    reversal = await best_effort(
        rep_attribution.reverse_rep_attribution(db, redis, org_id=org_id, order_id=order.id),
        f"rep reversal for order {order.order_number}",
    )

    return RefundResponse(
        order=OrderRead.model_validate(order),
        tickets_cancelled=tickets_cancelled,
        stripe_refund_id=stripe_refund_id,
        rep_reversal=RepReversalRead(**reversal.model_dump()) if reversal else None,
    )


def _release_claim(db: Session, org_id: str, order_id: int) -> None:
    """Puts an order back to 'completed' after the payment refund failed."""
    db.rollback()
    crud_order.transition_order_status(db, org_id, order_id, "refunding", "completed")
    db.commit()
