# app/models/customer.py
from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, func
from sqlalchemy.schema import UniqueConstraint

from app.db.session import Base


class Customer(Base):
    __tablename__ = "customers"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    # Always stored lowercased
    email = Column(String, nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    # Recomputed from completed orders after every order or refund
    total_orders = Column(Integer, nullable=False, default=0, server_default="0")
    total_spent = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    first_order_at = Column(DateTime(timezone=True), nullable=True)
    last_order_at = Column(DateTime(timezone=True), nullable=True)

    marketing_consent = Column(Boolean, nullable=True)
    marketing_consent_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint('org_id', 'email', name='_customer_org_email_uc'),)
