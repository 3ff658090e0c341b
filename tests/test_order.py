# tests/test_order.py

import logging
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.crud import inventory as crud_inventory
from app.models.cart import AbandonedCart
from app.models.customer import Customer
from app.models.event import MerchCollection, MerchCollectionItem, TicketType
from app.models.order import Order, Ticket
from app.schemas.order import MerchLineItem, OrderCustomer, OrderLineItem, OrderPayment, OrderVat
from app.services import order as order_service
from tests.conftest import ORG_ID

logger = logging.getLogger(__name__)

pytestmark = pytest.mark.asyncio


def _customer(email="fan@example.com"):
    return OrderCustomer(email=email, first_name="Sam", last_name="Fan", phone="+447700900000")


async def _order(db, redis, event, ticket_type, qty=2, ref="TEST-1", **kwargs):
    return await order_service.create_order(
        db, redis,
        org_id=ORG_ID,
        event=event,
        items=[OrderLineItem(ticket_type_id=ticket_type.id, qty=qty)],
        customer=_customer(),
        payment=OrderPayment(method="test", ref=ref, total_charged=kwargs.pop("total_charged", None)),
        **kwargs,
    )


async def test_order_without_charged_amount_has_no_fees(db_session, mock_redis, test_event, ticket_types, background_tasks):
    created = await _order(db_session, mock_redis, test_event, ticket_types["general"])

    order = created.order
    assert order.subtotal == Decimal("40.00")
    assert order.total == Decimal("40.00")
    assert order.fees == Decimal("0.00")
    assert order.status == "completed"
    assert order.order_number == "TKT-00001"


async def test_order_with_charged_amount_records_fees(db_session, mock_redis, test_event, ticket_types, background_tasks):
    created = await _order(db_session, mock_redis, test_event, ticket_types["general"], total_charged=Decimal("41.50"))

    assert created.order.subtotal == Decimal("40.00")
    assert created.order.fees == Decimal("1.50")
    assert created.order.total == Decimal("41.50")


async def test_one_ticket_per_unit_and_sold_counter(db_session, mock_redis, test_event, ticket_types, background_tasks):
    created = await order_service.create_order(
        db_session, mock_redis,
        org_id=ORG_ID,
        event=test_event,
        items=[
            OrderLineItem(ticket_type_id=ticket_types["general"].id, qty=2),
            OrderLineItem(ticket_type_id=ticket_types["vip"].id, qty=1),
        ],
        customer=_customer(),
        payment=OrderPayment(method="test", ref="TEST-MIXED"),
    )

    assert len(created.tickets) == 3
    codes = {t.ticket_code for t in created.tickets}
    assert len(codes) == 3
    for code in codes:
        assert len(code) == order_service.TICKET_CODE_LENGTH
        assert set(code) <= set(order_service.TICKET_CODE_ALPHABET)
    assert all(t.holder_email == "fan@example.com" for t in created.tickets)

    assert crud_inventory.get_sold(db_session, ticket_types["general"].id) == 2
    assert crud_inventory.get_sold(db_session, ticket_types["vip"].id) == 1
    assert created.order.subtotal == Decimal("85.00")


async def test_sold_counter_failure_keeps_the_order(db_session, mock_redis, test_event, ticket_types, background_tasks, mocker):
    mocker.patch.object(
        order_service.crud_inventory, "increment_sold",
        side_effect=OperationalError("UPDATE ticket_types", {}, Exception("deadlock detected")),
    )

    created = await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-DEADLOCK")

    assert created.order.status == "completed"
    assert db_session.query(Order).filter_by(payment_ref="TEST-DEADLOCK").count() == 1
    assert db_session.query(Ticket).filter_by(order_id=created.order.id).count() == 2
    assert crud_inventory.get_sold(db_session, ticket_types["general"].id) == 0


async def test_same_payment_ref_returns_existing_order(db_session, mock_redis, test_event, ticket_types, background_tasks):
    first = await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="pi_same")
    second = await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="pi_same")

    assert second.existing is True
    assert second.order.id == first.order.id
    assert len(second.tickets) == 2
    # The counter moved once
    assert crud_inventory.get_sold(db_session, ticket_types["general"].id) == 2
    assert db_session.query(Ticket).count() == 2


async def test_order_numbers_are_sequential(db_session, mock_redis, test_event, ticket_types, background_tasks):
    first = await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-A")
    second = await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-B")

    assert first.order.order_number == "TKT-00001"
    assert second.order.order_number == "TKT-00002"


async def test_order_number_collision_is_retried(db_session, mock_redis, test_event, ticket_types, background_tasks, mocker):
    await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-A")

    # A concurrent request already took TKT-00001; the second attempt gets a fresh number
    mocker.patch.object(order_service, "generate_order_number", side_effect=["TKT-00001", "TKT-00002"])
    created = await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-B")

    assert created.order.order_number == "TKT-00002"
    assert created.existing is False
    assert len(created.tickets) == 2


async def test_order_number_retries_exhausted(db_session, mock_redis, test_event, ticket_types, background_tasks, mocker):
    await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-A")

    mocker.patch.object(order_service, "generate_order_number", return_value="TKT-00001")
    with pytest.raises(order_service.OrderCreationError) as exc_info:
        await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-B")

    assert exc_info.value.status_code == 500
    assert crud_inventory.get_sold(db_session, ticket_types["general"].id) == 2


async def test_unknown_ticket_types_are_skipped(db_session, mock_redis, test_event, ticket_types, background_tasks):
    created = await order_service.create_order(
        db_session, mock_redis,
        org_id=ORG_ID,
        event=test_event,
        items=[
            OrderLineItem(ticket_type_id=ticket_types["general"].id, qty=1),
            OrderLineItem(ticket_type_id=424242, qty=5),
        ],
        customer=_customer(),
        payment=OrderPayment(method="test", ref="TEST-SKIP"),
    )
    assert len(created.tickets) == 1
    assert created.order.subtotal == Decimal("20.00")


async def test_order_with_no_valid_lines_is_rejected(db_session, mock_redis, test_event, ticket_types, background_tasks):
    with pytest.raises(order_service.OrderCreationError) as exc_info:
        await order_service.create_order(
            db_session, mock_redis,
            org_id=ORG_ID,
            event=test_event,
            items=[OrderLineItem(ticket_type_id=424242, qty=1)],
            customer=_customer(),
            payment=OrderPayment(method="test", ref="TEST-NONE"),
        )
    assert exc_info.value.status_code == 400


async def test_customer_stats_recomputed_from_orders(db_session, mock_redis, test_event, ticket_types, background_tasks):
    # Drifted aggregates heal on the next order
    db_session.add(Customer(org_id=ORG_ID, email="fan@example.com", total_orders=99, total_spent=Decimal("9999")))
    db_session.commit()

    await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-A")
    await _order(db_session, mock_redis, test_event, ticket_types["vip"], qty=1, ref="TEST-B")

    db_session.expire_all()
    customer = db_session.query(Customer).filter_by(org_id=ORG_ID, email="fan@example.com").one()
    assert customer.total_orders == 2
    assert customer.total_spent == Decimal("85.00")
    assert customer.last_order_at is not None
    assert customer.phone == "+447700900000"


async def test_customer_email_is_normalized(db_session, mock_redis, test_event, ticket_types, background_tasks):
    await order_service.create_order(
        db_session, mock_redis,
        org_id=ORG_ID,
        event=test_event,
        items=[OrderLineItem(ticket_type_id=ticket_types["general"].id, qty=1)],
        customer=_customer(email="  Fan@Example.COM "),
        payment=OrderPayment(method="test", ref="TEST-CASE"),
    )
    assert db_session.query(Customer).filter_by(email="fan@example.com").count() == 1


async def test_vat_and_discount_code_stored_in_metadata(db_session, mock_redis, test_event, ticket_types, background_tasks):
    created = await _order(
        db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-VAT",
        vat=OrderVat(amount=Decimal("6.67"), rate=Decimal("20"), inclusive=True, vat_number="GB123"),
        discount_code=" NOREP ",
    )
    meta = created.order.meta
    assert meta["vat_amount"] == "6.67"
    assert meta["vat_rate"] == "20"
    assert meta["vat_inclusive"] is True
    assert meta["vat_number"] == "GB123"
    assert meta["discount_code"] == "NOREP"


async def test_order_recovers_open_cart(db_session, mock_redis, test_event, ticket_types, background_tasks, now):
    await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-PRE")
    customer = db_session.query(Customer).filter_by(email="fan@example.com").one()
    cart = AbandonedCart(
        org_id=ORG_ID, customer_id=customer.id, event_id=test_event.id, email=customer.email,
        items=[], subtotal=Decimal("20.00"), currency="GBP", status="abandoned",
        notification_count=1, cart_token="cart-token-recover", created_at=now,
    )
    db_session.add(cart)
    db_session.commit()

    created = await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-POST")

    db_session.refresh(cart)
    assert cart.status == "recovered"
    assert cart.recovered_order_id == created.order.id


async def test_side_effects_are_scheduled_not_awaited(db_session, mock_redis, test_event, ticket_types, background_tasks, rep_discount):
    await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-BG", discount_code="AVA10")

    descriptions = [description for description, _ in background_tasks]
    assert any(d.startswith("order confirmation") for d in descriptions)
    assert any(d.startswith("rep attribution") for d in descriptions)


async def test_confirmation_email_content(db_session, mock_redis, test_event, ticket_types, background_tasks, mock_resend):
    from tests.conftest import run_scheduled

    created = await _order(db_session, mock_redis, test_event, ticket_types["general"], ref="TEST-MAIL")
    results = await run_scheduled(background_tasks, "order confirmation")

    assert results == [True]
    payload = mock_resend.send_email.await_args.args[0]
    assert payload["to"] == ["fan@example.com"]
    assert created.order.order_number in payload["subject"]
    for ticket in created.tickets:
        assert ticket.ticket_code in payload["html"]


async def test_merch_preorder(db_session, mock_redis, test_event, background_tasks):
    collection = MerchCollection(org_id=ORG_ID, event_id=test_event.id, title="Tour Merch")
    db_session.add(collection)
    db_session.flush()
    tee = MerchCollectionItem(collection_id=collection.id, name="Tour Tee", price=Decimal("25.00"), sizes=["S", "M", "L"])
    db_session.add(tee)
    db_session.commit()

    created = await order_service.create_merch_order(
        db_session, mock_redis,
        org_id=ORG_ID,
        event=test_event,
        collection_id=collection.id,
        items=[MerchLineItem(collection_item_id=tee.id, qty=2, merch_size="M")],
        customer=_customer(),
        payment=OrderPayment(method="stripe", ref="pi_merch"),
    )

    order = created.order
    assert order.subtotal == Decimal("50.00")
    assert order.meta["order_type"] == "merch_preorder"
    assert order.meta["collection_title"] == "Tour Merch"
    assert order.meta["merch_items"][0]["product_name"] == "Tour Tee"
    assert all(t.merch_size == "M" for t in created.tickets)

    merch_pass = db_session.query(TicketType).filter_by(event_id=test_event.id, kind="merch_pass").one()
    assert merch_pass.is_hidden is True
    assert crud_inventory.get_sold(db_session, merch_pass.id) == 2


async def test_merch_pass_ticket_type_is_reused(db_session, test_event):
    first = order_service.ensure_merch_pass_ticket_type(db_session, ORG_ID, test_event.id)
    second = order_service.ensure_merch_pass_ticket_type(db_session, ORG_ID, test_event.id)
    assert first.id == second.id


async def test_merch_order_unknown_collection(db_session, mock_redis, test_event, background_tasks):
    with pytest.raises(order_service.OrderCreationError) as exc_info:
        await order_service.create_merch_order(
            db_session, mock_redis,
            org_id=ORG_ID,
            event=test_event,
            collection_id=999,
            items=[MerchLineItem(collection_item_id=1, qty=1)],
            customer=_customer(),
            payment=OrderPayment(method="stripe", ref="pi_nomerch"),
        )
    assert exc_info.value.status_code == 404
