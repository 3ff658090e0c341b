# app/models/discount.py
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, func

from app.db.session import Base


class Discount(Base):
    __tablename__ = "discounts"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    # Matched case-insensitively
    code = Column(String, nullable=False, index=True)
    description = Column(String, nullable=True)

    # 'percentage' or 'fixed'
    type = Column(String, nullable=False, default="percentage")
    value = Column(Numeric(10, 2), nullable=False, default=0)

    # 'active' or 'inactive'
    status = Column(String, nullable=False, default="active", server_default="active")

    # Owning rep; sales through this code are attributed to them
    rep_id = Column(Integer, ForeignKey("reps.id"), nullable=True, index=True)

    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0, server_default="0")
    starts_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
