# app/models/tenant.py
from sqlalchemy import Column, Integer, String, DateTime, JSON, func
from sqlalchemy.schema import UniqueConstraint

from app.db.session import Base


class TenantSetting(Base):
    __tablename__ = "tenant_settings"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)

    # 'rep_program', 'abandoned_cart_automation', 'announcement_automation', 'email'
    key = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint('org_id', 'key', name='_tenant_settings_org_key_uc'),)
