# app/crud/cart.py
from datetime import datetime
from typing import List, Optional, Set
from sqlalchemy.orm import Session

from app.models.cart import AbandonedCart

OPEN_CART_STATUSES = ("pending", "abandoned")


def get_open_cart(db: Session, org_id: str, customer_id: int, event_id: int) -> Optional[AbandonedCart]:
    """The one cart per (customer, event) that is still in play."""
    return db.query(AbandonedCart).filter(
        AbandonedCart.org_id == org_id,
        AbandonedCart.customer_id == customer_id,
        AbandonedCart.event_id == event_id,
        AbandonedCart.status.in_(OPEN_CART_STATUSES),
    ).order_by(AbandonedCart.id.desc()).first()


def get_cart_by_token(db: Session, cart_token: str) -> Optional[AbandonedCart]:
    return db.query(AbandonedCart).filter(AbandonedCart.cart_token == cart_token).first()


def get_org_ids_with_open_carts(db: Session) -> List[str]:
    rows = db.query(AbandonedCart.org_id).filter(
        AbandonedCart.status.in_(OPEN_CART_STATUSES)
    ).distinct().all()
    return [org_id for org_id, in rows]


def get_unsubscribed_emails(db: Session, org_id: str) -> Set[str]:
    """Emails that opted out of recovery emails on any cart."""
    rows = db.query(AbandonedCart.email).filter(
        AbandonedCart.org_id == org_id,
        AbandonedCart.unsubscribed_at.isnot(None),
    ).distinct().all()
    return {email for email, in rows}


def mark_recovered(
    db: Session, org_id: str, customer_id: int, event_id: int, order_id: int | None, now: datetime
) -> int:
    """
    Conditional: only open carts move to 'recovered', so a sweep can never
    promote them again. Requires an external commit.
    """
    return db.query(AbandonedCart).filter(
        AbandonedCart.org_id == org_id,
        AbandonedCart.customer_id == customer_id,
        AbandonedCart.event_id == event_id,
        AbandonedCart.status.in_(OPEN_CART_STATUSES),
    ).update({
        AbandonedCart.status: "recovered",
        AbandonedCart.recovered_at: now,
        AbandonedCart.recovered_order_id: order_id,
    }, synchronize_session=False)


def unsubscribe_email(db: Session, org_id: str, email: str, now: datetime) -> int:
    return db.query(AbandonedCart).filter(
        AbandonedCart.org_id == org_id,
        AbandonedCart.email == email,
        AbandonedCart.unsubscribed_at.is_(None),
    ).update({AbandonedCart.unsubscribed_at: now}, synchronize_session=False)


def has_active_recovery(db: Session, org_id: str, email: str, event_id: int) -> bool:
    """True while the contact is mid cart-recovery for this event."""
    return db.query(AbandonedCart.id).filter(
        AbandonedCart.org_id == org_id,
        AbandonedCart.email == email,
        AbandonedCart.event_id == event_id,
        AbandonedCart.status == "abandoned",
        AbandonedCart.notification_count > 0,
        AbandonedCart.unsubscribed_at.is_(None),
    ).first() is not None
