# app/models/notification.py
from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, JSON, func, Boolean, false
from app.db.session import Base
from sqlalchemy.orm import relationship

class RepNotification(Base):
    __tablename__ = "rep_notifications"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    rep_id = Column(Integer, ForeignKey("reps.id"), nullable=False, index=True)

    # 'sale_attributed', 'level_up', 'reward_unlocked', ...
    type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    link = Column(String, nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    is_read = Column(Boolean, default=False, nullable=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    rep = relationship("Rep")
