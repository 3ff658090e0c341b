# app/services/checkout.py

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import List

import stripe
from fastapi import HTTPException, status
from pydantic import ValidationError
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.clients.stripe_client import stripe_client
from app.models.event import Event
from app.schemas.checkout import CheckoutErrorDetail
from app.schemas.order import OrderCreateResponse, OrderCustomer, OrderLineItem, OrderPayment, OrderVat
from app.services import discount as discount_service
from app.services import order as order_service

logger = logging.getLogger(__name__)


def _fail(status_code: int, error: str, payment_captured: bool = False, payment_ref: str | None = None) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=CheckoutErrorDetail(error=error, payment_captured=payment_captured, payment_ref=payment_ref).model_dump(),
    )


def _vat_from_metadata(metadata: dict) -> OrderVat | None:
    if not metadata.get("vat_amount"):
        return None
    return OrderVat(
        amount=Decimal(metadata["vat_amount"]),
        rate=Decimal(metadata.get("vat_rate") or "0"),
        inclusive=str(metadata.get("vat_inclusive", "true")).lower() == "true",
        vat_number=metadata.get("vat_number") or None,
    )


async def confirm_payment(db: Session, redis: Redis, payment_intent_id: str) -> OrderCreateResponse:
    """
    Turns a succeeded Stripe PaymentIntent into an order.
    The checkout encodes the cart in the intent's metadata; a repeat call for the same
    intent returns the order created the first time.
    """
    if not stripe_client.is_configured:
        raise _fail(status.HTTP_503_SERVICE_UNAVAILABLE, "Payments are not configured")

    # --- Step 1: verify the payment with Stripe ---
    try:
        intent = await stripe_client.retrieve_payment_intent(payment_intent_id)
    except stripe.StripeError:
        raise _fail(status.HTTP_502_BAD_GATEWAY, "Could not verify payment")

    if intent.status != "succeeded":
        raise _fail(status.HTTP_400_BAD_REQUEST, f"Payment not completed. Status: {intent.status}")

    metadata = dict(intent.metadata or {})
    org_id = metadata.get("org_id")
    if not org_id or not metadata.get("event_id") or not metadata.get("customer_email") or not metadata.get("items_json"):
        logger.critical(f"PaymentIntent {payment_intent_id} succeeded but is missing order metadata.")
        raise _fail(status.HTTP_400_BAD_REQUEST, "PaymentIntent missing required metadata", True, payment_intent_id)

    # --- Step 2: rebuild the checkout from the metadata ---
    try:
        items: List[OrderLineItem] = [OrderLineItem(**item) for item in json.loads(metadata["items_json"])]
        customer = OrderCustomer(
            email=metadata["customer_email"],
            first_name=metadata.get("customer_first_name") or "",
            last_name=metadata.get("customer_last_name") or "",
            phone=metadata.get("customer_phone") or None,
        )
        vat = _vat_from_metadata(metadata)
        event_id = int(metadata["event_id"])
    except (ValueError, TypeError, InvalidOperation, ValidationError) as e:
        logger.critical(f"PaymentIntent {payment_intent_id} succeeded but its metadata is invalid: {e}")
        raise _fail(status.HTTP_400_BAD_REQUEST, "PaymentIntent metadata is invalid", True, payment_intent_id)

    event = db.query(Event).filter(Event.org_id == org_id, Event.id == event_id).first()
    if event is None:
        logger.critical(f"PaymentIntent {payment_intent_id} succeeded for unknown event {metadata['event_id']}.")
        raise _fail(status.HTTP_404_NOT_FOUND, "Event not found", True, payment_intent_id)

    discount_code = metadata.get("discount_code") or None
    payment = OrderPayment(
        method="stripe",
        ref=payment_intent_id,
        total_charged=Decimal(intent.amount) / 100,
    )

    # --- Step 3: create the order ---
    try:
        created = await order_service.create_order(
            db, redis,
            org_id=org_id, event=event, items=items, customer=customer,
            payment=payment, vat=vat, discount_code=discount_code,
        )
    except order_service.OrderCreationError as e:
        logger.critical(
            f"PAYMENT TAKEN BUT ORDER NOT CREATED: PaymentIntent {payment_intent_id}, org {org_id}, "
            f"customer {customer.email}: {e.message}"
        )
        raise _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, e.message, True, payment_intent_id)

    # --- Step 4: discount usage, only for a newly created order ---
    if discount_code and not created.existing:
        try:
            if discount_service.record_usage(db, org_id, discount_code):
                db.commit()
        except Exception:
            db.rollback()
            logger.error(f"Failed to record usage of discount '{discount_code}'", exc_info=True)

    return order_service.to_response(created)
