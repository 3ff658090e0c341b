# tests/test_announcement.py

import logging
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException

from app.crud import announcement as crud_announcement
from app.models.announcement import AnnouncementSignup
from app.models.cart import AbandonedCart
from app.models.customer import Customer
from app.models.order import Order
from app.schemas.announcement import AnnouncementSignupCreate
from app.schemas.settings import ANNOUNCEMENT_AUTOMATION_KEY
from app.services import announcement
from tests.conftest import ORG_ID, seed_settings

logger = logging.getLogger(__name__)

pytestmark = pytest.mark.asyncio


@pytest.fixture
def live_at(test_event, now):
    # Same instant as test_event.tickets_live_at, kept timezone-aware
    return now + timedelta(days=3)


@pytest.fixture
def subscriber(db_session):
    customer = Customer(org_id=ORG_ID, email="early@example.com", first_name="Jo")
    db_session.add(customer)
    db_session.commit()
    return customer


def _signup(db, event, customer, created_at, count=1, token="sub-token-0001", **kwargs):
    signup = AnnouncementSignup(
        org_id=ORG_ID,
        event_id=event.id,
        customer_id=customer.id,
        email=customer.email,
        first_name=customer.first_name,
        status="pending",
        notification_count=count,
        unsubscribe_token=token,
        created_at=created_at,
        **kwargs,
    )
    db.add(signup)
    db.commit()
    return signup


def _subjects(mock_resend):
    return [call.args[0]["subject"] for call in mock_resend.send_email.await_args_list]


# --- Signup ---

async def test_signup_sends_confirmation(db_session, mock_redis, mock_resend, test_event, now):
    data = AnnouncementSignupCreate(org_id=ORG_ID, event_id=test_event.id, email="Early@Example.com", first_name="Jo")

    result = await announcement.signup_for_announcement(db_session, mock_redis, data, now=now)

    assert result.already_signed_up is False
    assert result.confirmation_sent is True
    signup = db_session.get(AnnouncementSignup, result.signup_id)
    db_session.refresh(signup)
    assert signup.email == "early@example.com"
    assert signup.notification_count == 1
    assert signup.status == "pending"
    assert _subjects(mock_resend) == ["You're on the list for Warehouse Rave"]

    customer = db_session.query(Customer).filter_by(email="early@example.com").one()
    assert customer.marketing_consent is True


async def test_repeat_signup_is_not_duplicated(db_session, mock_redis, mock_resend, test_event, now):
    data = AnnouncementSignupCreate(org_id=ORG_ID, event_id=test_event.id, email="early@example.com")

    first = await announcement.signup_for_announcement(db_session, mock_redis, data, now=now)
    second = await announcement.signup_for_announcement(db_session, mock_redis, data, now=now)

    assert second.already_signed_up is True
    assert second.signup_id == first.signup_id
    assert db_session.query(AnnouncementSignup).count() == 1
    mock_resend.send_email.assert_awaited_once()


async def test_signup_rejected_once_tickets_are_live(db_session, mock_redis, test_event, now):
    data = AnnouncementSignupCreate(org_id=ORG_ID, event_id=test_event.id, email="late@example.com")

    with pytest.raises(HTTPException) as exc_info:
        await announcement.signup_for_announcement(db_session, mock_redis, data, now=now + timedelta(days=3))

    assert exc_info.value.status_code == 400


async def test_failed_confirmation_is_retried_by_sweep(db_session, mock_redis, mock_resend, test_event, now):
    mock_resend.send_email.side_effect = [RuntimeError("provider down"), {"id": "email_2"}]
    data = AnnouncementSignupCreate(org_id=ORG_ID, event_id=test_event.id, email="early@example.com")

    result = await announcement.signup_for_announcement(db_session, mock_redis, data, now=now)
    assert result.confirmation_sent is False

    summary = await announcement.run_announcement_sweep(db_session, mock_redis, now=now + timedelta(minutes=10))

    assert summary.sent == 1
    signup = db_session.get(AnnouncementSignup, result.signup_id)
    db_session.refresh(signup)
    assert signup.notification_count == 1


async def test_sweep_discovers_tenants_with_due_signups(db_session, test_event, subscriber, now):
    _signup(db_session, test_event, subscriber, created_at=now, count=0)
    other = Customer(org_id=ORG_ID, email="done@example.com")
    db_session.add(other)
    db_session.commit()
    done = _signup(db_session, test_event, other, created_at=now, count=4, token="sub-token-0002")
    done.org_id = "org_done"
    done.status = "completed"
    db_session.commit()

    assert crud_announcement.get_org_ids_with_active_signups(db_session) == [ORG_ID]


# --- Sweep ---

async def test_full_sequence(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    logger.info("--- SCENARIO: hype, tickets live, final reminder ---")
    signup = _signup(db_session, test_event, subscriber, created_at=now)

    await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at - timedelta(minutes=30))
    db_session.refresh(signup)
    assert signup.notification_count == 2

    await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at + timedelta(minutes=1))
    db_session.refresh(signup)
    assert signup.notification_count == 3

    # Final reminder waits for the configured delay
    await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at + timedelta(hours=47))
    db_session.refresh(signup)
    assert signup.notification_count == 3

    await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at + timedelta(hours=48, minutes=1))
    db_session.refresh(signup)
    assert signup.notification_count == 4
    assert signup.status == "completed"

    assert _subjects(mock_resend) == [
        "Tickets for Warehouse Rave go live in 1 hour",
        "Tickets for Warehouse Rave are live now",
        "Last chance: tickets for Warehouse Rave",
    ]


async def test_hype_step_waits_for_its_window(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    signup = _signup(db_session, test_event, subscriber, created_at=now)

    summary = await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at - timedelta(hours=2))

    db_session.refresh(signup)
    assert summary.sent == 0
    assert signup.notification_count == 1
    mock_resend.send_email.assert_not_awaited()


async def test_missed_hype_goes_straight_to_live(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    signup = _signup(db_session, test_event, subscriber, created_at=now)

    await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at + timedelta(minutes=5))

    db_session.refresh(signup)
    assert signup.notification_count == 3
    assert _subjects(mock_resend) == ["Tickets for Warehouse Rave are live now"]


async def test_disabled_step_is_skipped(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    seed_settings(db_session, ANNOUNCEMENT_AUTOMATION_KEY, {"step_2_enabled": False})
    signup = _signup(db_session, test_event, subscriber, created_at=now)

    summary = await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at - timedelta(minutes=30))

    db_session.refresh(signup)
    assert summary.skipped == 1
    assert signup.notification_count == 2
    mock_resend.send_email.assert_not_awaited()


async def test_custom_copy_is_used(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    seed_settings(db_session, ANNOUNCEMENT_AUTOMATION_KEY, {"step_3_subject": "Doors are open, online"})
    _signup(db_session, test_event, subscriber, created_at=now, count=2)

    await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at + timedelta(minutes=1))

    assert _subjects(mock_resend) == ["Doors are open, online"]


async def test_unsubscribed_signup_advances_without_email(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    signup = _signup(db_session, test_event, subscriber, created_at=now, unsubscribed_at=now)

    summary = await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at - timedelta(minutes=30))

    db_session.refresh(signup)
    assert summary.skipped == 1
    assert signup.notification_count == 2
    mock_resend.send_email.assert_not_awaited()


async def test_final_reminder_suppressed_after_purchase(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    signup = _signup(db_session, test_event, subscriber, created_at=now, count=3)
    db_session.add(Order(
        org_id=ORG_ID, order_number="TKT-00001", event_id=test_event.id, customer_id=subscriber.id,
        status="completed", subtotal=Decimal("20.00"), fees=Decimal("0"), total=Decimal("20.00"),
        currency="GBP", payment_method="test", payment_ref="TEST-1", meta={}, created_at=live_at,
    ))
    db_session.commit()

    summary = await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at + timedelta(hours=49))

    db_session.refresh(signup)
    assert summary.suppressed == 1
    assert signup.status == "completed"
    mock_resend.send_email.assert_not_awaited()


async def test_final_reminder_suppressed_during_cart_recovery(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    signup = _signup(db_session, test_event, subscriber, created_at=now, count=3)
    db_session.add(AbandonedCart(
        org_id=ORG_ID, customer_id=subscriber.id, event_id=test_event.id, email=subscriber.email,
        items=[], subtotal=Decimal("20.00"), currency="GBP", status="abandoned",
        notification_count=1, cart_token="cart-token-annc", created_at=live_at,
    ))
    db_session.commit()

    await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at + timedelta(hours=49))

    db_session.refresh(signup)
    assert signup.status == "completed"
    mock_resend.send_email.assert_not_awaited()


async def test_event_already_started_expires_signup(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    signup = _signup(db_session, test_event, subscriber, created_at=now, count=3)
    test_event.date_start = live_at + timedelta(hours=1)
    db_session.commit()

    await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at + timedelta(hours=49))

    db_session.refresh(signup)
    assert signup.status == "expired"
    mock_resend.send_email.assert_not_awaited()


async def test_automation_disabled_sends_nothing(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    seed_settings(db_session, ANNOUNCEMENT_AUTOMATION_KEY, {"enabled": False})
    signup = _signup(db_session, test_event, subscriber, created_at=now)

    await announcement.run_announcement_sweep(db_session, mock_redis, now=live_at + timedelta(minutes=1))

    db_session.refresh(signup)
    assert signup.notification_count == 1
    mock_resend.send_email.assert_not_awaited()


async def test_sweep_twice_sends_once(db_session, mock_redis, mock_resend, test_event, subscriber, live_at, now):
    _signup(db_session, test_event, subscriber, created_at=now)
    run_at = live_at + timedelta(minutes=1)

    first = await announcement.run_announcement_sweep(db_session, mock_redis, now=run_at)
    second = await announcement.run_announcement_sweep(db_session, mock_redis, now=run_at)

    assert first.sent == 1
    assert second.sent == 0
    mock_resend.send_email.assert_awaited_once()


# --- Unsubscribe ---

async def test_unsubscribe_withdraws_consent(db_session, test_event, subscriber, now):
    subscriber.marketing_consent = True
    signup = _signup(db_session, test_event, subscriber, created_at=now)

    count = announcement.unsubscribe_announcements(db_session, signup.unsubscribe_token, now=now)

    assert count == 1
    db_session.refresh(signup)
    db_session.refresh(subscriber)
    assert signup.unsubscribed_at is not None
    assert subscriber.marketing_consent is False


async def test_unsubscribe_unknown_token(db_session):
    with pytest.raises(HTTPException) as exc_info:
        announcement.unsubscribe_announcements(db_session, "does-not-exist")
    assert exc_info.value.status_code == 404
