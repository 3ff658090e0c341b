# app/routers/v1/endpoints/checkout.py

import logging

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.redis import get_redis_client
from app.dependencies import get_db
from app.schemas.cart import CartCaptureResponse, CheckoutCapture
from app.schemas.checkout import CheckoutConfirmRequest
from app.schemas.discount import DiscountValidateRequest, DiscountValidation
from app.schemas.order import OrderCreateResponse
from app.services import abandoned_cart as cart_service
from app.services import checkout as checkout_service
from app.services import discount as discount_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout")


@router.post("/capture", response_model=CartCaptureResponse)
def capture_checkout_endpoint(data: CheckoutCapture, db: Session = Depends(get_db)):
    """
    Saves the checkout details before payment.
    An unfinished checkout later drives the abandoned-cart emails.
    """
    return cart_service.capture_cart(db, data)


@router.post("/confirm", response_model=OrderCreateResponse)
async def confirm_checkout_endpoint(
    data: CheckoutConfirmRequest,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
):
    """
    Called by the storefront once Stripe reports the payment as succeeded.
    Safe to call more than once for the same PaymentIntent.
    """
    return await checkout_service.confirm_payment(db, redis, data.payment_intent_id)


@router.post("/validate-discount", response_model=DiscountValidation)
def validate_discount_endpoint(data: DiscountValidateRequest, db: Session = Depends(get_db)):
    return discount_service.validate_discount(db, data.org_id, data.code)
