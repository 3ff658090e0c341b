# app/services/order.py

import logging
import re
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, NamedTuple, Optional

from redis.asyncio import Redis
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.tasks import fire_and_forget
from app.crud import customer as crud_customer
from app.crud import inventory as crud_inventory
from app.crud import order as crud_order
from app.dependencies import get_db_context
from app.models.customer import Customer
from app.models.event import Event, MerchCollection, MerchCollectionItem, TicketType
from app.models.order import Order, OrderItem, Ticket
from app.schemas.email import EmailTicket, OrderConfirmationEmail
from app.schemas.order import (
    MerchLineItem, OrderCreateResponse, OrderCustomer, OrderLineItem, OrderPayment,
    OrderRead, OrderVat, TicketRead,
)
from app.services import email as email_service
from app.services import rep_attribution
from app.services import settings as settings_service
from app.services.abandoned_cart import mark_carts_recovered
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

MERCH_PASS_NAME = "Merch Pre-order"
# Excludes 0/O/1/I
TICKET_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TICKET_CODE_LENGTH = 10


class OrderCreationError(Exception):
    """Raised by the order assembler; carries the HTTP status the caller should return."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CreatedOrder(NamedTuple):
    order: Order
    tickets: List[Ticket]
    customer_id: int
    # True when the order already existed for this payment reference
    existing: bool = False


class _Line(NamedTuple):
    ticket_type_id: int
    qty: int
    unit_price: Decimal
    merch_size: Optional[str]
    email_name: str
    merch_name: Optional[str]


def generate_ticket_code() -> str:
    return "".join(secrets.choice(TICKET_CODE_ALPHABET) for _ in range(TICKET_CODE_LENGTH))


def generate_order_number(db: Session, org_id: str) -> str:
    """Next sequential number for the tenant, e.g. TKT-00042."""
    prefix = settings.ORDER_NUMBER_PREFIX
    latest = crud_order.get_latest_order_number(db, org_id)
    next_seq = 1
    if latest:
        match = re.search(r"(\d+)$", latest)
        if match:
            next_seq = int(match.group(1)) + 1
    return f"{prefix}-{next_seq:05d}"


def recompute_customer_stats(db: Session, org_id: str, customer_id: int, now: datetime | None = None) -> Optional[Customer]:
    """Customer aggregates always come from the completed orders themselves. Requires an external commit."""
    return crud_customer.recompute_stats(db, org_id, customer_id, now=now)


def _vat_meta(vat: Optional[OrderVat]) -> Dict:
    if vat is None or vat.amount <= 0:
        return {}
    meta = {
        "vat_amount": str(vat.amount),
        "vat_rate": str(vat.rate),
        "vat_inclusive": vat.inclusive,
    }
    if vat.vat_number:
        meta["vat_number"] = vat.vat_number
    return meta


# --- Ticket orders ---

async def create_order(
    db: Session,
    redis: Redis,
    *,
    org_id: str,
    event: Event,
    items: List[OrderLineItem],
    customer: OrderCustomer,
    payment: OrderPayment,
    vat: Optional[OrderVat] = None,
    discount_code: str | None = None,
    send_email: bool = True,
) -> CreatedOrder:
    """
    Turns a paid checkout into a completed order with one ticket per unit.
    Used by the payment confirmation flow and the admin/test path.
    Calling it again with the same payment reference returns the first order.
    """
    # --- Step 1: idempotency on payment_ref ---
    existing = _existing_order(db, org_id, payment.ref)
    if existing:
        return existing

    # --- Step 2: authoritative prices ---
    ticket_types = {
        tt.id: tt for tt in crud_inventory.get_ticket_types_for_org(
            db, org_id, [item.ticket_type_id for item in items]
        )
    }
    lines: List[_Line] = []
    for item in items:
        tt = ticket_types.get(item.ticket_type_id)
        if tt is None or tt.event_id != event.id:
            logger.warning(f"Order for event {event.id}: unknown ticket type {item.ticket_type_id}, skipping line.")
            continue
        lines.append(_Line(
            ticket_type_id=tt.id,
            qty=item.qty,
            unit_price=Decimal(str(tt.price)),
            merch_size=item.merch_size,
            email_name=tt.name,
            merch_name=tt.merch_name if item.merch_size else None,
        ))
    if not lines:
        raise OrderCreationError("No valid ticket types in order", 400)

    meta = _vat_meta(vat)
    if discount_code:
        meta["discount_code"] = discount_code.strip()

    return await _assemble_order(
        db, redis,
        org_id=org_id, event=event, lines=lines, customer=customer, payment=payment,
        meta=meta, vat=vat, send_email=send_email, attribute=True,
    )


# --- Merch pre-orders ---

def ensure_merch_pass_ticket_type(db: Session, org_id: str, event_id: int) -> TicketType:
    """Hidden sellable that lets merch collection use the ticket scanning flow."""
    tt = db.query(TicketType).filter(
        TicketType.org_id == org_id,
        TicketType.event_id == event_id,
        TicketType.kind == "merch_pass",
    ).first()
    if tt:
        return tt
    tt = TicketType(
        org_id=org_id, event_id=event_id, name=MERCH_PASS_NAME,
        price=Decimal("0"), capacity=None, sold=0, kind="merch_pass", is_hidden=True,
    )
    db.add(tt)
    db.commit()
    db.refresh(tt)
    logger.info(f"Created merch pass ticket type {tt.id} for event {event_id}.")
    return tt


async def create_merch_order(
    db: Session,
    redis: Redis,
    *,
    org_id: str,
    event: Event,
    collection_id: int,
    items: List[MerchLineItem],
    customer: OrderCustomer,
    payment: OrderPayment,
    vat: Optional[OrderVat] = None,
    send_email: bool = True,
) -> CreatedOrder:
    """Merch pre-order: priced from the collection, fulfilled as merch-pass tickets."""
    existing = _existing_order(db, org_id, payment.ref)
    if existing:
        return existing

    collection = db.query(MerchCollection).filter(
        MerchCollection.org_id == org_id,
        MerchCollection.id == collection_id,
        MerchCollection.event_id == event.id,
    ).first()
    if collection is None:
        raise OrderCreationError("Merch collection not found", 404)

    collection_items = {
        ci.id: ci for ci in db.query(MerchCollectionItem).filter(
            MerchCollectionItem.collection_id == collection.id,
            MerchCollectionItem.id.in_([item.collection_item_id for item in items]),
        ).all()
    }
    merch_pass = ensure_merch_pass_ticket_type(db, org_id, event.id)

    lines: List[_Line] = []
    merch_items = []
    for item in items:
        ci = collection_items.get(item.collection_item_id)
        if ci is None:
            logger.warning(f"Merch order for collection {collection.id}: unknown item {item.collection_item_id}, skipping.")
            continue
        unit_price = Decimal(str(ci.price))
        lines.append(_Line(
            ticket_type_id=merch_pass.id,
            qty=item.qty,
            unit_price=unit_price,
            merch_size=item.merch_size,
            email_name=MERCH_PASS_NAME,
            merch_name=ci.name,
        ))
        merch_items.append({
            "collection_item_id": ci.id,
            "product_name": ci.name,
            "qty": item.qty,
            "unit_price": str(unit_price),
            "merch_size": item.merch_size,
        })
    if not lines:
        raise OrderCreationError("No valid merch items in order", 400)

    meta = {
        "order_type": "merch_preorder",
        "collection_id": collection.id,
        "collection_title": collection.title,
        "merch_items": merch_items,
        **_vat_meta(vat),
    }
    return await _assemble_order(
        db, redis,
        org_id=org_id, event=event, lines=lines, customer=customer, payment=payment,
        meta=meta, vat=vat, send_email=send_email, attribute=False,
    )


# --- Shared skeleton ---

def _existing_order(db: Session, org_id: str, payment_ref: str) -> Optional[CreatedOrder]:
    order = crud_order.get_order_by_payment_ref(db, org_id, payment_ref)
    if order is None:
        return None
    logger.info(f"Order {order.order_number} already exists for payment {payment_ref}; returning it.")
    return CreatedOrder(
        order=order,
        tickets=crud_order.get_order_tickets(db, order.id),
        customer_id=order.customer_id,
        existing=True,
    )


def _insert_order(
    db: Session, org_id: str, event: Event, customer: OrderCustomer, payment: OrderPayment,
    subtotal: Decimal, meta: Dict, now: datetime,
) -> tuple[Order, Customer] | CreatedOrder:
    """
    Customer upsert plus order row, retried on order-number collisions.
    Returns the existing order instead when a concurrent request won the payment_ref.
    """
    total = payment.total_charged if payment.total_charged is not None else subtotal
    fees = max(Decimal("0"), total - subtotal) if payment.total_charged is not None else Decimal("0")

    for attempt in range(1, settings.ORDER_NUMBER_MAX_RETRIES + 1):
        db_customer = crud_customer.upsert_customer(
            db, org_id, customer.email, first_name=customer.first_name,
            last_name=customer.last_name, phone=customer.phone, now=now,
        )
        order = Order(
            org_id=org_id,
            order_number=generate_order_number(db, org_id),
            event_id=event.id,
            customer_id=db_customer.id,
            status="completed",
            subtotal=subtotal,
            fees=fees,
            total=total,
            currency=(event.currency or "GBP").upper(),
            payment_method=payment.method,
            payment_ref=payment.ref,
            meta=dict(meta),
            created_at=now,
        )
        db.add(order)
        try:
            db.flush()
            return order, db_customer
        except IntegrityError:
            db.rollback()
            existing = _existing_order(db, org_id, payment.ref)
            if existing:
                return existing
            logger.warning(f"Order number collision for org {org_id} (attempt {attempt}), retrying.")
        except Exception as e:
            db.rollback()
            logger.error(f"Order creation failed for payment {payment.ref}", exc_info=True)
            raise OrderCreationError("Failed to create order", 500) from e

    raise OrderCreationError("Failed to create order", 500)


def _increment_sold(db: Session, order_number: str, ticket_type_id: int, qty: int) -> None:
    """
    Sold counter update for one line. Runs in a savepoint: a failure is logged
    and only the counter update is lost, never the order.
    """
    try:
        with db.begin_nested():
            updated = crud_inventory.increment_sold(db, ticket_type_id, qty)
    except SQLAlchemyError:
        logger.error(f"Order {order_number}: sold counter update failed for ticket type {ticket_type_id}.", exc_info=True)
        return
    if not updated:
        logger.error(f"Order {order_number}: sold counter not updated for ticket type {ticket_type_id}.")


async def _assemble_order(
    db: Session,
    redis: Redis,
    *,
    org_id: str,
    event: Event,
    lines: List[_Line],
    customer: OrderCustomer,
    payment: OrderPayment,
    meta: Dict,
    vat: Optional[OrderVat],
    send_email: bool,
    attribute: bool,
) -> CreatedOrder:
    now = utcnow()
    subtotal = sum((line.unit_price * line.qty for line in lines), Decimal("0"))

    inserted = _insert_order(db, org_id, event, customer, payment, subtotal, meta, now)
    if isinstance(inserted, CreatedOrder):
        return inserted
    order, db_customer = inserted

    try:
        # --- Line items, one ticket per unit, then the sold counter ---
        tickets: List[Ticket] = []
        email_tickets: List[EmailTicket] = []
        for line in lines:
            order_item = OrderItem(
                org_id=org_id,
                order_id=order.id,
                ticket_type_id=line.ticket_type_id,
                qty=line.qty,
                unit_price=line.unit_price,
                merch_size=line.merch_size,
            )
            db.add(order_item)
            db.flush()

            for _ in range(line.qty):
                ticket = Ticket(
                    org_id=org_id,
                    order_item_id=order_item.id,
                    order_id=order.id,
                    event_id=event.id,
                    ticket_type_id=line.ticket_type_id,
                    customer_id=db_customer.id,
                    ticket_code=generate_ticket_code(),
                    holder_first_name=customer.first_name,
                    holder_last_name=customer.last_name,
                    holder_email=db_customer.email,
                    merch_size=line.merch_size,
                    status="valid",
                )
                db.add(ticket)
                tickets.append(ticket)
                email_tickets.append(EmailTicket(
                    ticket_code=ticket.ticket_code,
                    ticket_type_name=line.email_name,
                    merch_size=line.merch_size,
                    merch_name=line.merch_name,
                ))

            _increment_sold(db, order.order_number, line.ticket_type_id, line.qty)

        db.flush()

        # --- Customer aggregates and cart recovery ---
        recompute_customer_stats(db, org_id, db_customer.id, now=now)
        mark_carts_recovered(db, org_id, db_customer.id, event.id, order.id, now=now)

        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to assemble order for payment {payment.ref}", exc_info=True)
        raise OrderCreationError("Failed to create order", 500) from e

    db.refresh(order)
    logger.info(
        f"Order {order.order_number} created for org {org_id}: {len(tickets)} ticket(s), "
        f"total {order.total} {order.currency} via {payment.method}."
    )

    # --- Side effects, never awaited by the caller ---
    if send_email:
        fire_and_forget(
            _send_confirmation(redis, OrderConfirmationEmail(
                org_id=org_id,
                to=db_customer.email,
                first_name=customer.first_name,
                order_number=order.order_number,
                total=order.total,
                currency=order.currency,
                event_name=event.name,
                venue_name=event.venue_name,
                date_start=event.date_start,
                doors_time=event.doors_time,
                tickets=email_tickets,
                vat_amount=vat.amount if vat and vat.amount > 0 else None,
                vat_rate=vat.rate if vat and vat.amount > 0 else None,
            )),
            f"order confirmation for {order.order_number}",
        )
    if attribute and meta.get("discount_code"):
        fire_and_forget(
            _attribute_in_background(
                redis,
                org_id=org_id,
                order_id=order.id,
                event_id=event.id,
                discount_code=meta["discount_code"],
                order_total=Decimal(str(order.total)),
                ticket_count=len(tickets),
            ),
            f"rep attribution for {order.order_number}",
        )

    return CreatedOrder(order=order, tickets=tickets, customer_id=db_customer.id)


async def _send_confirmation(redis: Redis, payload: OrderConfirmationEmail):
    with get_db_context() as db:
        branding = await settings_service.get_email_settings(db, redis, payload.org_id)
    if not branding.order_confirmation_enabled:
        logger.info(f"Order confirmation emails disabled for org {payload.org_id}.")
        return False
    return await email_service.send_order_confirmation(payload, branding)


async def _attribute_in_background(redis: Redis, **kwargs):
    # Separate session from the request that created the order
    with get_db_context() as db:
        return await rep_attribution.attribute_sale_to_rep(db, redis, **kwargs)


def to_response(created: CreatedOrder) -> OrderCreateResponse:
    return OrderCreateResponse(
        order=OrderRead.model_validate(created.order),
        tickets=[TicketRead.model_validate(t) for t in created.tickets],
        customer_id=created.customer_id,
        existing=created.existing,
    )
