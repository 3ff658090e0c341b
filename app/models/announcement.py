# app/models/announcement.py
from sqlalchemy import Column, Integer, String, ForeignKey

from app.db.session import Base
from app.models.lifecycle import LifecycleMixin


class AnnouncementSignup(LifecycleMixin, Base):
    """
    "Notify me when tickets go live" signup. Steps:
    1 confirmation, 2 hype (1h before live), 3 tickets live, 4 final reminder.
    Status: pending -> completed | expired
    """
    __tablename__ = "announcement_signups"
    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    email = Column(String, nullable=False, index=True)
    first_name = Column(String, nullable=True)
    unsubscribe_token = Column(String, nullable=False, unique=True, index=True)
