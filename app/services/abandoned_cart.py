# app/services/abandoned_cart.py

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from functools import partial
from typing import Dict, Optional

from fastapi import HTTPException, status
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.config import settings
from app.crud import cart as crud_cart
from app.crud import customer as crud_customer
from app.crud import inventory as crud_inventory
from app.crud import order as crud_order
from app.models.cart import AbandonedCart
from app.models.event import ACTIONABLE_EVENT_STATUSES, Event
from app.schemas.cart import CartCaptureResponse, CheckoutCapture
from app.schemas.email import CartEmailItem, CartRecoveryEmail
from app.schemas.lifecycle import SweepSummary
from app.schemas.settings import CartRecoveryStep, EmailSettings
from app.services import email as email_service
from app.services import lifecycle
from app.services import settings as settings_service
from app.services.discount import resolve_discount
from app.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "abandoned"


# --- Checkout capture ---

def capture_cart(db: Session, data: CheckoutCapture, now: datetime | None = None) -> CartCaptureResponse:
    """
    Records checkout details before payment so an unfinished checkout can be recovered.
    Re-capturing the same (customer, event) updates the open cart instead of creating one.
    """
    now = now or utcnow()
    event = db.query(Event).filter(Event.org_id == data.org_id, Event.id == data.event_id).first()
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")

    # Prices always come from the ticket types, never from the client
    ticket_types = {
        tt.id: tt for tt in crud_inventory.get_ticket_types_for_org(
            db, data.org_id, [item.ticket_type_id for item in data.items]
        )
    }
    items = []
    subtotal = Decimal("0")
    for item in data.items:
        tt = ticket_types.get(item.ticket_type_id)
        if tt is None or tt.event_id != event.id:
            continue
        items.append({
            "ticket_type_id": tt.id,
            "name": tt.name,
            "qty": item.qty,
            "price": str(tt.price),
            "merch_size": item.merch_size,
        })
        subtotal += Decimal(str(tt.price)) * item.qty

    if not items:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid items in cart")

    customer = crud_customer.upsert_customer(
        db, data.org_id, data.email, first_name=data.first_name,
        last_name=data.last_name, phone=data.phone,
    )
    if data.marketing_consent is not None:
        customer.marketing_consent = data.marketing_consent
        customer.marketing_consent_at = now

    discount = resolve_discount(db, data.org_id, data.discount_code) if data.discount_code else None

    cart = crud_cart.get_open_cart(db, data.org_id, customer.id, event.id)
    if cart:
        cart.items = items
        cart.subtotal = subtotal
        cart.first_name = data.first_name or cart.first_name
        cart.last_name = data.last_name or cart.last_name
        # Coming back to checkout re-enables recovery emails
        cart.unsubscribed_at = None
        if discount:
            cart.discount_code = discount.code
            cart.discount_type = discount.type
            cart.discount_value = discount.value
        logger.info(f"Updated cart {cart.id} for customer {customer.id}, event {event.id}.")
    else:
        cart = AbandonedCart(
            org_id=data.org_id,
            customer_id=customer.id,
            event_id=event.id,
            email=customer.email,
            first_name=data.first_name,
            last_name=data.last_name,
            items=items,
            subtotal=subtotal,
            currency=(event.currency or "GBP").upper(),
            status="pending",
            notification_count=0,
            cart_token=uuid.uuid4().hex,
            discount_code=discount.code if discount else None,
            discount_type=discount.type if discount else None,
            discount_value=discount.value if discount else None,
            created_at=now,
        )
        db.add(cart)
        logger.info(f"Captured new cart for customer {customer.id}, event {event.id}.")

    db.commit()
    db.refresh(cart)
    return CartCaptureResponse(
        cart_token=cart.cart_token, status=cart.status, subtotal=cart.subtotal, currency=cart.currency
    )


def mark_carts_recovered(
    db: Session, org_id: str, customer_id: int, event_id: int, order_id: int | None, now: datetime | None = None
) -> int:
    """Stops the recovery sequence once the customer buys. Requires an external commit."""
    count = crud_cart.mark_recovered(db, org_id, customer_id, event_id, order_id, now or utcnow())
    if count:
        logger.info(f"Marked {count} cart(s) recovered for customer {customer_id}, event {event_id} (order {order_id}).")
    return count


def unsubscribe_cart_recovery(db: Session, token: str, now: datetime | None = None) -> int:
    """Opts the cart's email out of recovery emails across the tenant."""
    cart = crud_cart.get_cart_by_token(db, token)
    if cart is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid unsubscribe link")
    count = crud_cart.unsubscribe_email(db, cart.org_id, cart.email, now or utcnow())
    db.commit()
    logger.info(f"Unsubscribed {cart.email} from cart recovery in org {cart.org_id} ({count} cart(s)).")
    return count


# --- Sweep ---

async def run_abandoned_cart_sweep(
    db: Session, redis: Redis, now: datetime | None = None, batch_limit: int | None = None
) -> SweepSummary:
    """
    One run of the abandoned-cart automation over every tenant:
    promotion, expiry, then each configured recovery step in order.
    """
    logger.info("--- Starting scheduled job: Abandoned Cart Recovery ---")
    now = now or utcnow()
    budget = lifecycle.BatchBudget(batch_limit or settings.LIFECYCLE_BATCH_LIMIT)
    total = SweepSummary()

    org_ids = crud_cart.get_org_ids_with_open_carts(db)
    if not org_ids:
        logger.info("No open carts found to process.")

    for org_id in org_ids:
        try:
            total.merge(await _sweep_org(db, redis, org_id, now, budget))
        except Exception as e:
            logger.error(f"Abandoned cart sweep failed for org {org_id}", exc_info=True)
            db.rollback()
            total.errors.append(f"{org_id}: {e}")

    logger.info(
        f"Abandoned cart sweep summary: orgs={total.orgs} promoted={total.promoted} expired={total.expired} "
        f"processed={total.processed} sent={total.sent} skipped={total.skipped} "
        f"suppressed={total.suppressed} race_lost={total.race_lost} failed={total.failed}"
    )
    logger.info("--- Finished scheduled job: Abandoned Cart Recovery ---")
    return total


async def _sweep_org(db: Session, redis: Redis, org_id: str, now: datetime, budget: lifecycle.BatchBudget) -> SweepSummary:
    summary = SweepSummary(orgs=1)

    # --- Step 1: promotion (grace window) ---
    summary.promoted = lifecycle.promote_pending(
        db, AbandonedCart, org_id, timedelta(minutes=settings.CART_GRACE_MINUTES), now
    )
    # --- Step 2: expiry (horizon) ---
    summary.expired = lifecycle.expire_stale(
        db, AbandonedCart, org_id, timedelta(minutes=settings.CART_EXPIRY_MINUTES), now, active_status=ACTIVE_STATUS
    )

    automation = await settings_service.get_cart_automation_settings(db, redis, org_id)
    if not automation.enabled or not automation.steps:
        logger.info(f"Org {org_id}: cart recovery automation disabled or has no steps.")
        return summary

    branding = await settings_service.get_email_settings(db, redis, org_id)
    unsubscribed = crud_cart.get_unsubscribed_emails(db, org_id)
    events: Dict[int, Optional[Event]] = {}

    # --- Step 3: per-step processing in step order ---
    for step_index, step in enumerate(automation.steps):
        if budget.exhausted:
            summary.batch_limited = True
            break

        carts = lifecycle.fetch_due(
            db, AbandonedCart, org_id,
            active_status=ACTIVE_STATUS,
            step_counts=[step_index],
            created_before=now - timedelta(minutes=step.delay_minutes),
            limit=budget.remaining,
        )
        for cart in carts:
            if not budget.take():
                summary.batch_limited = True
                break
            summary.processed += 1
            cart_id = cart.id
            try:
                if cart.event_id not in events:
                    events[cart.event_id] = db.get(Event, cart.event_id)
                event = events[cart.event_id]

                outcome = await lifecycle.process_step(
                    db, AbandonedCart, cart,
                    step_count=step_index,
                    active_status=ACTIVE_STATUS,
                    now=now,
                    opted_out=cart.unsubscribed_at is not None or cart.email in unsubscribed,
                    step_enabled=step.enabled,
                    suppress=partial(_suppression_status, db, event, now),
                    dispatch=partial(_dispatch_recovery_email, cart, event, step, step_index, branding),
                )
                lifecycle.count_outcome(summary, outcome)
            except Exception as e:
                logger.error(f"Failed to process cart {cart_id} at step {step_index}", exc_info=True)
                db.rollback()
                summary.failed += 1
                summary.errors.append(f"cart {cart_id}: {e}")

    return summary


def _suppression_status(db: Session, event: Optional[Event], now: datetime, cart: AbandonedCart) -> Optional[str]:
    """Terminal status for a cart that should no longer be emailed, else None."""
    if event is None:
        return "expired"
    if event.status not in ACTIONABLE_EVENT_STATUSES:
        return "expired"
    if event.date_start is not None and as_utc(event.date_start) <= now:
        return "expired"
    if crud_order.has_completed_order_for_event(db, cart.org_id, cart.customer_id, cart.event_id, since=cart.created_at):
        return "recovered"
    return None


async def _dispatch_recovery_email(
    cart: AbandonedCart, event: Event, step: CartRecoveryStep, step_index: int, branding: EmailSettings
) -> bool:
    discount_code = None
    discount_percent = None
    if step.include_discount and step.discount_code:
        discount_code = step.discount_code
        discount_percent = step.discount_percent
    elif cart.discount_code:
        discount_code = cart.discount_code

    payload = CartRecoveryEmail(
        org_id=cart.org_id,
        to=cart.email,
        first_name=cart.first_name,
        event_name=event.name,
        event_slug=event.slug,
        venue_name=event.venue_name,
        date_start=event.date_start,
        items=[
            CartEmailItem(name=item.get("name", "Ticket"), qty=item.get("qty", 1), price=Decimal(str(item.get("price", "0"))))
            for item in (cart.items or [])
        ],
        subtotal=cart.subtotal,
        currency=cart.currency,
        step_index=step_index,
        subject=step.subject,
        preview_text=step.preview_text,
        discount_code=discount_code,
        discount_percent=discount_percent,
        recovery_url=email_service.build_cart_recovery_url(event.slug, cart.cart_token),
        unsubscribe_url=email_service.build_unsubscribe_url(cart.cart_token, "cart_recovery"),
    )
    return await email_service.send_cart_recovery(payload, branding)
