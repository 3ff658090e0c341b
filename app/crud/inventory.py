# app/crud/inventory.py
"""
Atomic movements of the `sold` counter on ticket types.

Every change is a single UPDATE evaluated by the database
(`sold = sold + :qty`), so concurrent checkouts never lose increments.
"""
import logging
from typing import List
from sqlalchemy import case, update
from sqlalchemy.orm import Session

from app.models.event import TicketType

logger = logging.getLogger(__name__)


def increment_sold(db: Session, ticket_type_id: int, qty: int) -> bool:
    """
    Adds `qty` to the sold counter. Returns False when no row matched.
    Requires an external db.commit().
    """
    result = db.execute(
        update(TicketType)
        .where(TicketType.id == ticket_type_id)
        .values(sold=TicketType.sold + qty)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def increment_sold_within_capacity(db: Session, ticket_type_id: int, qty: int) -> bool:
    """
    Conditional variant: only increments while the result stays within capacity.
    Returns False if the ticket type is sold out (or does not exist).
    """
    result = db.execute(
        update(TicketType)
        .where(
            TicketType.id == ticket_type_id,
            (TicketType.capacity.is_(None)) | (TicketType.sold + qty <= TicketType.capacity),
        )
        .values(sold=TicketType.sold + qty)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def decrement_sold(db: Session, ticket_type_id: int, qty: int) -> bool:
    """Subtracts `qty` from the sold counter, never going below zero."""
    result = db.execute(
        update(TicketType)
        .where(TicketType.id == ticket_type_id)
        .values(sold=case((TicketType.sold - qty < 0, 0), else_=TicketType.sold - qty))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def get_ticket_types_for_org(db: Session, org_id: str, ticket_type_ids: List[int]) -> List[TicketType]:
    """Batch fetch, scoped to the tenant."""
    if not ticket_type_ids:
        return []
    return db.query(TicketType).filter(
        TicketType.org_id == org_id, TicketType.id.in_(ticket_type_ids)
    ).all()


def get_sold(db: Session, ticket_type_id: int) -> int:
    """Fresh read of the counter straight from the database."""
    value = db.query(TicketType.sold).filter(TicketType.id == ticket_type_id).scalar()
    return int(value or 0)
