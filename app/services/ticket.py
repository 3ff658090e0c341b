# app/services/ticket.py

import logging
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.crud import order as crud_order
from app.models.order import Ticket
from app.schemas.order import TicketRead
from app.schemas.ticket import TicketScanResult, TicketVerification
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


def _get_ticket_or_404(db: Session, org_id: str, ticket_code: str) -> Ticket:
    ticket = crud_order.get_ticket_by_code(db, org_id, ticket_code.strip().upper())
    if ticket is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return ticket


def verify_ticket(db: Session, org_id: str, ticket_code: str) -> TicketVerification:
    ticket = _get_ticket_or_404(db, org_id, ticket_code)
    order = ticket.order
    return TicketVerification(
        ticket=TicketRead.model_validate(ticket),
        order_number=order.order_number,
        event_id=ticket.event_id,
        event_name=order.event.name if order.event else None,
        ticket_type_name=ticket.ticket_type.name if ticket.ticket_type else None,
    )


def scan_ticket(db: Session, org_id: str, ticket_code: str, now: datetime | None = None) -> TicketScanResult:
    """
    Admits a ticket once. The stamp is a conditional update, so two scanners
    racing on the same code admit it only once.
    """
    now = now or utcnow()
    ticket = _get_ticket_or_404(db, org_id, ticket_code)

    if ticket.status == "cancelled":
        logger.warning(f"Scan refused: ticket {ticket.ticket_code} is cancelled.")
        return TicketScanResult(result="cancelled", ticket=TicketRead.model_validate(ticket))

    admitted = crud_order.mark_ticket_scanned(db, ticket.id, now)
    db.commit()
    db.refresh(ticket)

    if not admitted:
        if ticket.status == "cancelled":
            return TicketScanResult(result="cancelled", ticket=TicketRead.model_validate(ticket))
        logger.info(f"Ticket {ticket.ticket_code} was already scanned at {ticket.scanned_at}.")
        return TicketScanResult(
            result="already_scanned", ticket=TicketRead.model_validate(ticket), scanned_at=ticket.scanned_at
        )

    logger.info(f"Ticket {ticket.ticket_code} admitted.")
    return TicketScanResult(result="admitted", ticket=TicketRead.model_validate(ticket), scanned_at=ticket.scanned_at)
