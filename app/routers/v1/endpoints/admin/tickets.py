# app/routers/v1/endpoints/admin/tickets.py

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.dependencies import get_admin_org_id, get_db
from app.schemas.ticket import TicketScanResult, TicketVerification
from app.services import ticket as ticket_service

router = APIRouter()


@router.get("/{ticket_code}", response_model=TicketVerification)
def get_ticket_endpoint(ticket_code: str, org_id: str = Depends(get_admin_org_id), db: Session = Depends(get_db)):
    return ticket_service.verify_ticket(db, org_id, ticket_code)


@router.post("/{ticket_code}/scan", response_model=TicketScanResult)
def scan_ticket_endpoint(ticket_code: str, org_id: str = Depends(get_admin_org_id), db: Session = Depends(get_db)):
    """[ADMIN] Door scan. A ticket is admitted once; later scans report when it was used."""
    return ticket_service.scan_ticket(db, org_id, ticket_code)
