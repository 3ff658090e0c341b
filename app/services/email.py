# app/services/email.py

import logging
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from app.clients.resend import resend_client
from app.core.config import settings
from app.schemas.email import (
    AnnouncementEmail,
    CartRecoveryEmail,
    OrderConfirmationEmail,
    RepEmail,
)
from app.schemas.settings import EmailSettings

logger = logging.getLogger(__name__)

ANNOUNCEMENT_DEFAULT_SUBJECTS = {
    1: "You're on the list for {event}",
    2: "Tickets for {event} go live in 1 hour",
    3: "Tickets for {event} are live now",
    4: "Last chance: tickets for {event}",
}

CART_DEFAULT_SUBJECTS = [
    "You left something behind",
    "Your tickets are still waiting",
    "Last chance to grab your tickets",
]

ANNOUNCEMENT_DEFAULT_TEXT = {
    1: "We'll email you the moment tickets go on sale.",
    2: "Tickets go on sale in one hour. Be ready.",
    3: "Tickets are on sale now.",
    4: "Tickets are still available, but not for long.",
}

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

# Autoescaping applies to every .html template
templates = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_email(template_name: str, branding: Optional[EmailSettings], heading: str, **context) -> str:
    """Renders one email template inside the shared branded layout."""
    template = templates.get_template(template_name)
    return template.render(branding=branding or EmailSettings(), heading=heading, **context)


async def _send(
    branding: Optional[EmailSettings],
    to: str,
    subject: str,
    tag: str,
    template_name: str,
    heading: str,
    **context,
) -> bool:
    """
    Renders and sends one email through the provider.
    Never raises: every failure is logged and reported as False.
    """
    branding = branding or EmailSettings()
    if not resend_client.is_configured:
        logger.warning(f"Email provider not configured, skipping '{tag}' email to {to}.")
        return False

    try:
        html = render_email(template_name, branding, heading, **context)
    except TemplateError:
        logger.error(f"Failed to render '{template_name}' for '{tag}' email to {to}", exc_info=True)
        return False

    sender_address = branding.from_email or settings.EMAIL_FROM_DEFAULT
    payload = {
        "from": f"{branding.from_name} <{sender_address}>",
        "to": [to],
        "subject": subject,
        "html": html,
        "tags": [{"name": "category", "value": tag}],
    }
    if branding.reply_to:
        payload["reply_to"] = branding.reply_to

    try:
        result = await resend_client.send_email(payload)
        logger.info(f"Sent '{tag}' email to {to} (id: {result.get('id')}).")
        return True
    except Exception as e:
        logger.error(f"Failed to send '{tag}' email to {to}: {e}")
        return False


# --- Order confirmation ---

async def send_order_confirmation(payload: OrderConfirmationEmail, branding: Optional[EmailSettings] = None) -> bool:
    subject = f"Your tickets for {payload.event_name} ({payload.order_number})"
    return await _send(
        branding, payload.to, subject, "order_confirmation",
        "order_confirmation.html", "Order confirmed", email=payload,
    )


# --- Abandoned cart ---

async def send_cart_recovery(payload: CartRecoveryEmail, branding: Optional[EmailSettings] = None) -> bool:
    default_subject = CART_DEFAULT_SUBJECTS[min(payload.step_index, len(CART_DEFAULT_SUBJECTS) - 1)]
    subject = payload.subject or default_subject
    return await _send(
        branding, payload.to, subject, "cart_recovery",
        "cart_recovery.html", subject, email=payload, unsubscribe_url=payload.unsubscribe_url,
    )


# --- Announcement sequence ---

async def send_announcement(payload: AnnouncementEmail, branding: Optional[EmailSettings] = None) -> bool:
    subject = payload.custom_subject or ANNOUNCEMENT_DEFAULT_SUBJECTS[payload.step].format(event=payload.event_name)
    return await _send(
        branding, payload.to, subject, f"announcement_step_{payload.step}",
        "announcement.html", payload.custom_heading or subject,
        email=payload,
        text=payload.custom_body or ANNOUNCEMENT_DEFAULT_TEXT[payload.step],
        unsubscribe_url=payload.unsubscribe_url,
    )


# --- Rep emails ---

async def send_rep_email(payload: RepEmail, branding: Optional[EmailSettings] = None) -> bool:
    data = payload.data
    if payload.kind == "sale":
        subject = f"New sale: +{data.get('points', 0)} points"
    elif payload.kind == "level_up":
        subject = f"Level up! You're now {data.get('level_name', '')}"
    else:
        subject = f"Reward unlocked: {data.get('reward_name', '')}"
    return await _send(
        branding, payload.to, subject, f"rep_{payload.kind}",
        f"rep_{payload.kind}.html", subject, first_name=payload.first_name or "there", data=data,
    )


def build_unsubscribe_url(token: str, kind: str) -> str:
    return f"{settings.SITE_URL}/api/v1/unsubscribe?token={token}&type={kind}"


def build_cart_recovery_url(event_slug: Optional[str], cart_token: str) -> str:
    return f"{settings.SITE_URL}/event/{event_slug or ''}/checkout?restore={cart_token}"


def build_event_url(event_slug: Optional[str]) -> str:
    return f"{settings.SITE_URL}/event/{event_slug or ''}"
