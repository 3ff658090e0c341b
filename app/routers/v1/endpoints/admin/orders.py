# app/routers/v1/endpoints/admin/orders.py

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.redis import get_redis_client
from app.dependencies import get_admin_org_id, get_db
from app.models.event import Event
from app.schemas.order import AdminOrderCreate, OrderCreateResponse, OrderPayment, RefundRequest, RefundResponse
from app.schemas.rep import OrderRepAttribution
from app.services import order as order_service
from app.services import refund as refund_service
from app.services import rep_attribution

logger = logging.getLogger(__name__)

# Prefix /orders is added in admin/__init__.py
router = APIRouter()


@router.post("", response_model=OrderCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_order_endpoint(
    data: AdminOrderCreate,
    org_id: str = Depends(get_admin_org_id),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
):
    """
    [ADMIN] Creates an order without a payment provider (comps, box office, tests).
    Without `total_charged` the total equals the subtotal and fees are zero.
    """
    event = db.query(Event).filter(Event.org_id == org_id, Event.id == data.event_id).first()
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")

    payment = OrderPayment(
        method=data.payment_method,
        ref=data.payment_ref or f"TEST-{uuid.uuid4().hex[:12].upper()}",
        total_charged=data.total_charged,
    )
    try:
        created = await order_service.create_order(
            db, redis,
            org_id=org_id, event=event, items=data.items, customer=data.customer,
            payment=payment, vat=data.vat, discount_code=data.discount_code,
            send_email=data.send_email,
        )
    except order_service.OrderCreationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return order_service.to_response(created)


@router.get("/{order_id}/rep-attribution", response_model=OrderRepAttribution)
def get_order_rep_attribution_endpoint(
    order_id: int,
    org_id: str = Depends(get_admin_org_id),
    db: Session = Depends(get_db),
):
    """[ADMIN] What refunding this order would take back from its rep."""
    attribution = rep_attribution.get_order_rep_attribution(db, org_id, order_id)
    if attribution is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order has no rep attribution")
    return attribution


@router.post("/{order_id}/refund", response_model=RefundResponse)
async def refund_order_endpoint(
    order_id: int,
    data: RefundRequest,
    org_id: str = Depends(get_admin_org_id),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
):
    """
    [ADMIN] Full refund: payment, tickets, inventory, customer stats and rep points.
    """
    return await refund_service.refund_order(db, redis, org_id=org_id, order_id=order_id, reason=data.reason)
