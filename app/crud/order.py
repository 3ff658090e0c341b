# app/crud/order.py
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.order import Order, OrderItem, Ticket


def get_order(db: Session, org_id: str, order_id: int) -> Optional[Order]:
    return db.query(Order).filter(Order.org_id == org_id, Order.id == order_id).first()


def get_order_by_payment_ref(db: Session, org_id: str, payment_ref: str) -> Optional[Order]:
    return db.query(Order).filter(
        Order.org_id == org_id, Order.payment_ref == payment_ref
    ).first()


def get_latest_order_number(db: Session, org_id: str) -> Optional[str]:
    return db.query(Order.order_number).filter(
        Order.org_id == org_id
    ).order_by(Order.id.desc()).limit(1).scalar()


def get_order_items(db: Session, order_id: int) -> List[OrderItem]:
    return db.query(OrderItem).filter(OrderItem.order_id == order_id).order_by(OrderItem.id).all()


def get_order_tickets(db: Session, order_id: int) -> List[Ticket]:
    return db.query(Ticket).filter(Ticket.order_id == order_id).order_by(Ticket.id).all()


def get_order_ticket_count(db: Session, order_id: int) -> int:
    value = db.query(func.coalesce(func.sum(OrderItem.qty), 0)).filter(
        OrderItem.order_id == order_id
    ).scalar()
    return int(value or 0)


def has_completed_order_for_event(
    db: Session, org_id: str, customer_id: int, event_id: int, since=None
) -> bool:
    query = db.query(Order.id).filter(
        Order.org_id == org_id,
        Order.customer_id == customer_id,
        Order.event_id == event_id,
        Order.status == "completed",
    )
    if since is not None:
        query = query.filter(Order.created_at >= since)
    return query.first() is not None


def transition_order_status(db: Session, org_id: str, order_id: int, from_status: str, to_status: str, **values) -> bool:
    """
    Conditional status change; False when the order is no longer in `from_status`.
    Requires an external db.commit().
    """
    changes = {Order.status: to_status}
    changes.update({getattr(Order, name): value for name, value in values.items()})
    updated = db.query(Order).filter(
        Order.org_id == org_id, Order.id == order_id, Order.status == from_status
    ).update(changes, synchronize_session=False)
    return updated == 1


def cancel_order_tickets(db: Session, order_id: int) -> int:
    """Marks every ticket of the order cancelled. Returns the number changed."""
    return db.query(Ticket).filter(
        Ticket.order_id == order_id, Ticket.status != "cancelled"
    ).update({Ticket.status: "cancelled"}, synchronize_session=False)


def get_ticket_by_code(db: Session, org_id: str, ticket_code: str) -> Optional[Ticket]:
    return db.query(Ticket).filter(
        Ticket.org_id == org_id, Ticket.ticket_code == ticket_code
    ).first()


def mark_ticket_scanned(db: Session, ticket_id: int, now) -> bool:
    """Conditional: only a valid, never-scanned ticket is stamped."""
    updated = db.query(Ticket).filter(
        Ticket.id == ticket_id,
        Ticket.status == "valid",
        Ticket.scanned_at.is_(None),
    ).update({Ticket.scanned_at: now}, synchronize_session=False)
    return updated == 1
