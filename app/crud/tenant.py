# app/crud/tenant.py
from typing import Optional
from sqlalchemy.orm import Session

from app.models.tenant import TenantSetting


def get_setting(db: Session, org_id: str, key: str) -> Optional[TenantSetting]:
    return db.query(TenantSetting).filter(
        TenantSetting.org_id == org_id, TenantSetting.key == key
    ).first()


def upsert_setting(db: Session, org_id: str, key: str, data: dict) -> TenantSetting:
    """
    Merges `data` into the stored document (or creates it).
    Requires an external db.commit().
    """
    row = get_setting(db, org_id, key)
    if row is None:
        row = TenantSetting(org_id=org_id, key=key, data=dict(data))
        db.add(row)
    else:
        # JSON columns only detect reassignment
        row.data = {**(row.data or {}), **data}
    return row
