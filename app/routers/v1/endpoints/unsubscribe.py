# app/routers/v1/endpoints/unsubscribe.py

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.dependencies import get_db
from app.schemas.announcement import UnsubscribeResponse
from app.services import abandoned_cart as cart_service
from app.services import announcement as announcement_service

router = APIRouter()


@router.get("/unsubscribe", response_model=UnsubscribeResponse)
def unsubscribe_endpoint(
    token: str = Query(..., min_length=8),
    type: Literal["cart_recovery", "announcement"] = Query(...),
    db: Session = Depends(get_db),
):
    """Link target of the unsubscribe footer in lifecycle emails."""
    if type == "cart_recovery":
        count = cart_service.unsubscribe_cart_recovery(db, token)
    else:
        count = announcement_service.unsubscribe_announcements(db, token)
    return UnsubscribeResponse(type=type, unsubscribed=count)
