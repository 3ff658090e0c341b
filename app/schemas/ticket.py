# app/schemas/ticket.py
from pydantic import BaseModel
from typing import Literal, Optional
from datetime import datetime

from app.schemas.order import TicketRead


class TicketVerification(BaseModel):
    """What the door scanner sees for a ticket code."""
    ticket: TicketRead
    order_number: str
    event_id: int
    event_name: Optional[str] = None
    ticket_type_name: Optional[str] = None


class TicketScanResult(BaseModel):
    # 'admitted' on the first scan; otherwise why entry is refused
    result: Literal["admitted", "already_scanned", "cancelled"]
    ticket: TicketRead
    scanned_at: Optional[datetime] = None
