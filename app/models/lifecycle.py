# app/models/lifecycle.py
from sqlalchemy import Column, Integer, String, DateTime, func


class LifecycleMixin:
    """
    Columns shared by every record driven through a timed email sequence.
    notification_count points at the next unsent step.
    """
    org_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, index=True)
    notification_count = Column(Integer, nullable=False, default=0, server_default="0")
    notified_at = Column(DateTime(timezone=True), nullable=True)
    unsubscribed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
