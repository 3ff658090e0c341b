# app/crud/announcement.py
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session

from app.models.announcement import AnnouncementSignup


def get_signup(db: Session, org_id: str, event_id: int, email: str) -> Optional[AnnouncementSignup]:
    return db.query(AnnouncementSignup).filter(
        AnnouncementSignup.org_id == org_id,
        AnnouncementSignup.event_id == event_id,
        AnnouncementSignup.email == email,
    ).first()


def get_signup_by_token(db: Session, token: str) -> Optional[AnnouncementSignup]:
    return db.query(AnnouncementSignup).filter(AnnouncementSignup.unsubscribe_token == token).first()


def get_org_ids_with_active_signups(db: Session) -> List[str]:
    """
    Tenants with signups that still have emails due: a failed confirmation
    (count 0) or steps 2-4. Unsubscribed signups count too: their pointer
    still advances, without an email.
    """
    rows = db.query(AnnouncementSignup.org_id).filter(
        AnnouncementSignup.status == "pending",
        AnnouncementSignup.notification_count <= 3,
    ).distinct().all()
    return [org_id for org_id, in rows]


def unsubscribe_email(db: Session, org_id: str, email: str, now: datetime) -> int:
    return db.query(AnnouncementSignup).filter(
        AnnouncementSignup.org_id == org_id,
        AnnouncementSignup.email == email,
        AnnouncementSignup.unsubscribed_at.is_(None),
    ).update({AnnouncementSignup.unsubscribed_at: now}, synchronize_session=False)
