# tests/test_email.py

from decimal import Decimal

import pytest
from jinja2 import TemplateNotFound

from app.schemas.email import AnnouncementEmail, EmailTicket, OrderConfirmationEmail, RepEmail
from app.schemas.settings import EmailSettings
from app.services import email
from tests.conftest import ORG_ID

pytestmark = pytest.mark.asyncio


def sent_payload(mock_resend) -> dict:
    mock_resend.send_email.assert_awaited_once()
    return mock_resend.send_email.await_args.args[0]


async def test_order_confirmation_escapes_customer_input(mock_resend):
    payload = OrderConfirmationEmail(
        org_id=ORG_ID,
        to="buyer@example.com",
        first_name="<script>alert(1)</script>",
        order_number="TKT-00001",
        total=Decimal("41.50"),
        currency="GBP",
        event_name="Rave & Roll",
        tickets=[EmailTicket(ticket_code="ABCDEFGH23", ticket_type_name="General")],
    )

    assert await email.send_order_confirmation(payload) is True

    html = sent_payload(mock_resend)["html"]
    assert "<script>" not in html
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
    assert "Rave &amp; Roll" in html
    assert "ABCDEFGH23" in html


async def test_announcement_custom_body_is_escaped(mock_resend):
    payload = AnnouncementEmail(
        org_id=ORG_ID,
        to="hype@example.com",
        step=3,
        event_name="Warehouse Rave",
        custom_body='<img src=x onerror="steal()">',
        event_url="https://tickets.example.com/event/warehouse-rave",
        unsubscribe_url="https://tickets.example.com/api/v1/unsubscribe?token=t&type=announcement",
    )

    assert await email.send_announcement(payload) is True

    sent = sent_payload(mock_resend)
    assert sent["subject"] == "Tickets for Warehouse Rave are live now"
    assert "<img" not in sent["html"]
    assert "&lt;img" in sent["html"]
    assert "Unsubscribe" in sent["html"]


async def test_branding_applies_to_sender_and_layout(mock_resend):
    branding = EmailSettings(from_name="Night Owls", from_email="hello@owls.example", reply_to="help@owls.example")
    payload = RepEmail(org_id=ORG_ID, to="ava@example.com", kind="level_up", data={"level_name": "Headliner"})

    assert await email.send_rep_email(payload, branding) is True

    sent = sent_payload(mock_resend)
    assert sent["from"] == "Night Owls <hello@owls.example>"
    assert sent["reply_to"] == "help@owls.example"
    assert branding.accent_color in sent["html"]


async def test_rep_sale_without_event_name(mock_resend):
    payload = RepEmail(org_id=ORG_ID, to="ava@example.com", kind="sale", data={"points": 10, "ticket_count": 1})

    assert await email.send_rep_email(payload) is True

    assert "1 ticket(s) for an event" in sent_payload(mock_resend)["html"]


async def test_render_failure_is_reported_without_sending(mock_resend, mocker):
    mocker.patch.object(email.templates, "get_template", side_effect=TemplateNotFound("rep_sale.html"))
    payload = RepEmail(org_id=ORG_ID, to="ava@example.com", kind="sale", data={"points": 10})

    assert await email.send_rep_email(payload) is False

    mock_resend.send_email.assert_not_awaited()


async def test_provider_error_is_reported_as_false(mock_resend):
    mock_resend.send_email.side_effect = RuntimeError("provider down")
    payload = RepEmail(org_id=ORG_ID, to="ava@example.com", kind="reward_unlocked", data={"reward_name": "Free entry"})

    assert await email.send_rep_email(payload) is False
