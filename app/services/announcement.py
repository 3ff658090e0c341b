# app/services/announcement.py

import logging
import uuid
from datetime import datetime, timedelta
from functools import partial
from typing import Optional

from fastapi import HTTPException, status
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.config import settings
from app.crud import announcement as crud_announcement
from app.crud import cart as crud_cart
from app.crud import customer as crud_customer
from app.crud import order as crud_order
from app.models.announcement import AnnouncementSignup
from app.models.event import ACTIONABLE_EVENT_STATUSES, Event
from app.schemas.announcement import AnnouncementSignupCreate, AnnouncementSignupResponse
from app.schemas.email import AnnouncementEmail
from app.schemas.lifecycle import SweepSummary
from app.schemas.settings import AnnouncementAutomationSettings, EmailSettings
from app.services import email as email_service
from app.services import lifecycle
from app.services import settings as settings_service
from app.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "pending"
FINAL_COUNT = 4
HYPE_WINDOW = timedelta(hours=1)
# Signup requests send step 1 themselves; the sweep only retries older failures
STEP_1_RETRY_AFTER = timedelta(minutes=5)

_COMPLETED = {AnnouncementSignup.status: "completed"}


def _final_values(target_count: int) -> Optional[dict]:
    return _COMPLETED if target_count >= FINAL_COUNT else None


# --- Signup ---

async def signup_for_announcement(
    db: Session, redis: Redis, data: AnnouncementSignupCreate, now: datetime | None = None
) -> AnnouncementSignupResponse:
    """
    Registers interest in an event before tickets go live and sends the
    step-1 confirmation synchronously (pointer 0 -> 1).
    """
    now = now or utcnow()
    event = db.query(Event).filter(Event.org_id == data.org_id, Event.id == data.event_id).first()
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    if event.tickets_live_at is None or as_utc(event.tickets_live_at) <= now:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tickets for this event are already on sale")

    customer = crud_customer.upsert_customer(db, data.org_id, data.email, first_name=data.first_name)
    if data.marketing_consent:
        customer.marketing_consent = True
        customer.marketing_consent_at = now

    signup = crud_announcement.get_signup(db, data.org_id, event.id, customer.email)
    if signup:
        if signup.unsubscribed_at is not None:
            signup.unsubscribed_at = None
        db.commit()
        logger.info(f"Email {customer.email} already signed up for event {event.id}.")
        return AnnouncementSignupResponse(signup_id=signup.id, already_signed_up=True, confirmation_sent=False)

    signup = AnnouncementSignup(
        org_id=data.org_id,
        event_id=event.id,
        customer_id=customer.id,
        email=customer.email,
        first_name=data.first_name,
        status=ACTIVE_STATUS,
        notification_count=0,
        unsubscribe_token=uuid.uuid4().hex,
        created_at=now,
    )
    db.add(signup)
    db.commit()
    db.refresh(signup)
    logger.info(f"New announcement signup {signup.id} for event {event.id}.")

    automation = await settings_service.get_announcement_settings(db, redis, data.org_id)
    branding = await settings_service.get_email_settings(db, redis, data.org_id)
    outcome = await lifecycle.process_step(
        db, AnnouncementSignup, signup,
        step_count=0,
        active_status=ACTIVE_STATUS,
        now=now,
        opted_out=False,
        step_enabled=automation.enabled and automation.step_1_enabled,
        suppress=lambda _signup: None,
        dispatch=partial(_dispatch_announcement, signup, event, 1, automation, branding),
    )
    return AnnouncementSignupResponse(
        signup_id=signup.id,
        already_signed_up=False,
        confirmation_sent=outcome is lifecycle.StepOutcome.SENT,
    )


def unsubscribe_announcements(db: Session, token: str, now: datetime | None = None) -> int:
    """
    Opts the signup's email out of every announcement sequence in the tenant
    and withdraws marketing consent.
    """
    now = now or utcnow()
    signup = crud_announcement.get_signup_by_token(db, token)
    if signup is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid unsubscribe link")

    count = crud_announcement.unsubscribe_email(db, signup.org_id, signup.email, now)
    customer = crud_customer.get_customer_by_email(db, signup.org_id, signup.email)
    if customer:
        customer.marketing_consent = False
        customer.marketing_consent_at = now
    db.commit()
    logger.info(f"Unsubscribed {signup.email} from announcements in org {signup.org_id} ({count} signup(s)).")
    return count


# --- Sweep ---

async def run_announcement_sweep(
    db: Session, redis: Redis, now: datetime | None = None, batch_limit: int | None = None
) -> SweepSummary:
    """
    One run of the announcement sequence over every tenant.
    Step 1 is sent at signup; this handles retries of step 1 and steps 2-4.
    """
    logger.info("--- Starting scheduled job: Announcement Emails ---")
    now = now or utcnow()
    budget = lifecycle.BatchBudget(batch_limit or settings.LIFECYCLE_BATCH_LIMIT)
    total = SweepSummary()

    org_ids = crud_announcement.get_org_ids_with_active_signups(db)
    if not org_ids:
        logger.info("No active announcement signups found to process.")

    for org_id in org_ids:
        try:
            total.merge(await _sweep_org(db, redis, org_id, now, budget))
        except Exception as e:
            logger.error(f"Announcement sweep failed for org {org_id}", exc_info=True)
            db.rollback()
            total.errors.append(f"{org_id}: {e}")

    logger.info(
        f"Announcement sweep summary: orgs={total.orgs} processed={total.processed} sent={total.sent} "
        f"skipped={total.skipped} suppressed={total.suppressed} race_lost={total.race_lost} failed={total.failed}"
    )
    logger.info("--- Finished scheduled job: Announcement Emails ---")
    return total


async def _sweep_org(db: Session, redis: Redis, org_id: str, now: datetime, budget: lifecycle.BatchBudget) -> SweepSummary:
    summary = SweepSummary(orgs=1)
    automation = await settings_service.get_announcement_settings(db, redis, org_id)
    if not automation.enabled:
        logger.info(f"Org {org_id}: announcement automation disabled.")
        return summary
    branding = await settings_service.get_email_settings(db, redis, org_id)

    live_at = Event.tickets_live_at
    join_event = [(Event, Event.id == AnnouncementSignup.event_id)]

    # (step number, pointer values accepted, target pointer, enabled, criteria, created_before)
    plan = [
        # Step 1 retry: confirmation failed at signup and tickets are not live yet
        (1, [0], 1, automation.step_1_enabled, [live_at > now], now - STEP_1_RETRY_AFTER),
        # Step 1 disabled or obsolete: tickets already live, skip the confirmation
        (1, [0], 1, False, [live_at <= now], now - STEP_1_RETRY_AFTER),
        # Step 2 (hype): within the hour before tickets go live
        (2, [1], 2, automation.step_2_enabled, [live_at > now, live_at <= now + HYPE_WINDOW], None),
        # Step 3 (live): accepts 1 as well, the hype email is pointless once live
        (3, [1, 2], 3, automation.step_3_enabled, [live_at <= now], None),
        # Step 4 (final reminder): a configurable delay after tickets went live
        (4, [3], 4, automation.step_4_enabled,
         [live_at <= now - timedelta(hours=automation.step_4_delay_hours)], None),
    ]

    for step, counts, target, enabled, criteria, created_before in plan:
        if budget.exhausted:
            summary.batch_limited = True
            break
        signups = lifecycle.fetch_due(
            db, AnnouncementSignup, org_id,
            active_status=ACTIVE_STATUS,
            step_counts=counts,
            created_before=created_before,
            limit=budget.remaining,
            joins=join_event,
            criteria=[live_at.isnot(None), *criteria],
        )
        for signup in signups:
            if not budget.take():
                summary.batch_limited = True
                break
            summary.processed += 1
            signup_id = signup.id
            try:
                event = db.get(Event, signup.event_id)
                outcome = await lifecycle.process_step(
                    db, AnnouncementSignup, signup,
                    step_count=signup.notification_count,
                    target_count=target,
                    extra_values=_final_values(target),
                    active_status=ACTIVE_STATUS,
                    now=now,
                    opted_out=signup.unsubscribed_at is not None,
                    step_enabled=enabled,
                    suppress=partial(_suppression_status, db, event, step, now),
                    dispatch=partial(_dispatch_announcement, signup, event, step, automation, branding),
                )
                lifecycle.count_outcome(summary, outcome)
            except Exception as e:
                logger.error(f"Failed to process announcement signup {signup_id} for step {step}", exc_info=True)
                db.rollback()
                summary.failed += 1
                summary.errors.append(f"signup {signup_id}: {e}")

    return summary


def _suppression_status(
    db: Session, event: Optional[Event], step: int, now: datetime, signup: AnnouncementSignup
) -> Optional[str]:
    """Terminal status for a signup that should no longer be emailed, else None."""
    if event is None or event.status not in ACTIONABLE_EVENT_STATUSES:
        return "expired"
    if event.date_start is not None and as_utc(event.date_start) <= now:
        return "expired"
    if step == 4:
        # Already bought, or already being chased by cart recovery for this event
        if signup.customer_id and crud_order.has_completed_order_for_event(
            db, signup.org_id, signup.customer_id, signup.event_id
        ):
            return "completed"
        if crud_cart.has_active_recovery(db, signup.org_id, signup.email, signup.event_id):
            return "completed"
    return None


async def _dispatch_announcement(
    signup: AnnouncementSignup,
    event: Event,
    step: int,
    automation: AnnouncementAutomationSettings,
    branding: EmailSettings,
) -> bool:
    copy = automation.step_copy(step)
    payload = AnnouncementEmail(
        org_id=signup.org_id,
        to=signup.email,
        first_name=signup.first_name,
        step=step,
        event_name=event.name,
        event_slug=event.slug,
        venue_name=event.venue_name,
        date_start=event.date_start,
        tickets_live_at=event.tickets_live_at,
        custom_subject=copy["subject"],
        custom_heading=copy["heading"],
        custom_body=copy["body"],
        event_url=email_service.build_event_url(event.slug),
        unsubscribe_url=email_service.build_unsubscribe_url(signup.unsubscribe_token, "announcement"),
    )
    return await email_service.send_announcement(payload, branding)
