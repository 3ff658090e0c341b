# app/services/settings.py

import json
import logging
from typing import Type, TypeVar
from fastapi import HTTPException, status
from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.crud import tenant as crud_tenant
from app.schemas.settings import (
    ANNOUNCEMENT_AUTOMATION_KEY,
    CART_AUTOMATION_KEY,
    EMAIL_SETTINGS_KEY,
    REP_PROGRAM_KEY,
    AnnouncementAutomationSettings,
    CartAutomationSettings,
    EmailSettings,
    RepProgramSettings,
)
from app.core.config import settings as app_settings # alias avoids clashing with tenant settings

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = app_settings.TENANT_SETTINGS_CACHE_TTL

SETTINGS_SCHEMAS = {
    REP_PROGRAM_KEY: RepProgramSettings,
    CART_AUTOMATION_KEY: CartAutomationSettings,
    ANNOUNCEMENT_AUTOMATION_KEY: AnnouncementAutomationSettings,
    EMAIL_SETTINGS_KEY: EmailSettings,
}

SettingsT = TypeVar("SettingsT", bound=BaseModel)


def _cache_key(org_id: str, key: str) -> str:
    return f"tenant_settings:{org_id}:{key}"


def merge_with_defaults(schema: Type[SettingsT], stored: dict | None) -> SettingsT:
    """Overlays the stored document on the schema defaults."""
    merged = schema().model_dump()
    merged.update(stored or {})
    return schema.model_validate(merged)


async def get_tenant_settings(db: Session, redis: Redis, org_id: str, key: str) -> BaseModel:
    """
    Read-through accessor for one settings document of one tenant.
    Redis first, then the database, then the schema defaults.
    """
    schema = SETTINGS_SCHEMAS[key]
    cache_key = _cache_key(org_id, key)

    # 1. Cache
    try:
        cached = await redis.get(cache_key)
    except Exception:
        logger.warning(f"Redis unavailable while reading '{cache_key}'", exc_info=True)
        cached = None
    if cached:
        try:
            return schema.model_validate(json.loads(cached))
        except Exception as e:
            logger.warning(f"Failed to validate cached settings '{cache_key}': {e}. Fetching fresh settings.")

    # 2. Database, merged over defaults
    try:
        row = crud_tenant.get_setting(db, org_id, key)
        result = merge_with_defaults(schema, row.data if row else None)
    except Exception:
        logger.error(f"CRITICAL: Failed to load settings '{key}' for org {org_id}. Using defaults.", exc_info=True)
        return schema()

    # 3. Cache the merged document
    try:
        await redis.set(cache_key, result.model_dump_json(), ex=CACHE_TTL_SECONDS)
    except Exception:
        logger.warning(f"Redis unavailable while caching '{cache_key}'", exc_info=True)

    return result


async def update_tenant_settings(db: Session, redis: Redis, org_id: str, key: str, data: dict) -> BaseModel:
    """Merges `data` into the stored document, validates it and drops the cache entry."""
    schema = SETTINGS_SCHEMAS[key]
    existing = crud_tenant.get_setting(db, org_id, key)
    # Validate before persisting so a bad payload never reaches the store
    try:
        validated = merge_with_defaults(schema, {**((existing.data if existing else None) or {}), **data})
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors(include_url=False, include_context=False))

    crud_tenant.upsert_setting(db, org_id, key, data)
    db.commit()
    try:
        await redis.delete(_cache_key(org_id, key))
    except Exception:
        logger.warning(f"Failed to invalidate settings cache for org {org_id}, key '{key}'", exc_info=True)

    logger.info(f"Settings '{key}' updated for org {org_id}.")
    return validated


async def get_rep_settings(db: Session, redis: Redis, org_id: str) -> RepProgramSettings:
    return await get_tenant_settings(db, redis, org_id, REP_PROGRAM_KEY)


async def get_cart_automation_settings(db: Session, redis: Redis, org_id: str) -> CartAutomationSettings:
    return await get_tenant_settings(db, redis, org_id, CART_AUTOMATION_KEY)


async def get_announcement_settings(db: Session, redis: Redis, org_id: str) -> AnnouncementAutomationSettings:
    return await get_tenant_settings(db, redis, org_id, ANNOUNCEMENT_AUTOMATION_KEY)


async def get_email_settings(db: Session, redis: Redis, org_id: str) -> EmailSettings:
    return await get_tenant_settings(db, redis, org_id, EMAIL_SETTINGS_KEY)
