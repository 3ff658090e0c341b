# app/crud/notification.py
from sqlalchemy.orm import Session
from app.models.notification import RepNotification

def create_notification(
    db: Session,
    org_id: str,
    rep_id: int,
    type: str,
    title: str,
    body: str | None = None,
    link: str | None = None,
    meta: dict | None = None,
) -> RepNotification:
    """Creates an in-app notification for a rep."""
    db_notification = RepNotification(
        org_id=org_id,
        rep_id=rep_id,
        type=type,
        title=title,
        body=body,
        link=link,
        meta=meta,
    )
    db.add(db_notification)
    db.commit()
    db.refresh(db_notification)
    return db_notification
