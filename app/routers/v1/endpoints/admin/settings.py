# app/routers/v1/endpoints/admin/settings.py

import logging
from typing import Literal

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.redis import get_redis_client
from app.dependencies import get_admin_org_id, get_db
from app.schemas.settings import (
    ANNOUNCEMENT_AUTOMATION_KEY, CART_AUTOMATION_KEY, EMAIL_SETTINGS_KEY, REP_PROGRAM_KEY,
    TenantSettingsUpdate,
)
from app.services import settings as settings_service

logger = logging.getLogger(__name__)

# Prefix /settings is added in admin/__init__.py
router = APIRouter()

SettingsKey = Literal[REP_PROGRAM_KEY, CART_AUTOMATION_KEY, ANNOUNCEMENT_AUTOMATION_KEY, EMAIL_SETTINGS_KEY]


@router.get("/{key}")
async def get_tenant_settings_endpoint(
    key: SettingsKey,
    org_id: str = Depends(get_admin_org_id),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
):
    """
    [ADMIN] Effective settings document for the tenant: stored values over the defaults.
    """
    settings = await settings_service.get_tenant_settings(db, redis, org_id, key)
    return settings.model_dump()


@router.put("/{key}")
async def update_tenant_settings_endpoint(
    key: SettingsKey,
    data: TenantSettingsUpdate,
    org_id: str = Depends(get_admin_org_id),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
):
    """
    [ADMIN] Updates part of a settings document. Only the given fields change;
    the cached copy is dropped.
    """
    settings = await settings_service.update_tenant_settings(db, redis, org_id, key, data.data)
    return settings.model_dump()
