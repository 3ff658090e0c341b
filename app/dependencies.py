# app/dependencies.py

import hmac
import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import SessionLocal

logger = logging.getLogger(__name__)


# --- DB session management ---
def get_db_session_instance() -> Session:
    """Creates and returns a new DB session."""
    return SessionLocal()


def get_db() -> Iterator[Session]:
    """
    Main FastAPI dependency for a DB session.
    A generator so it works with `Depends`.
    """
    db = get_db_session_instance()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Iterator[Session]:
    """
    Context manager for a DB session outside FastAPI (background tasks, cron jobs, scripts).
    """
    db = get_db_session_instance()
    try:
        yield db
    finally:
        db.close()


# --- Access checks ---

async def verify_admin_key(x_admin_key: str | None = Header(None)):
    """Static API key for the admin surface."""
    if not settings.ADMIN_API_KEY:
        logger.error("ADMIN_API_KEY is not configured; rejecting admin request.")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        logger.warning("Admin request with a missing or invalid X-Admin-Key.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")


async def get_admin_org_id(x_org_id: str = Header(...)) -> str:
    """Tenant the admin request acts on."""
    org_id = x_org_id.strip()
    if not org_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Org-Id header is required")
    return org_id


async def verify_cron_secret(authorization: str | None = Header(None)):
    """
    Scheduled-job endpoints accept only `Authorization: Bearer <CRON_SECRET>`.
    Runs before the handler touches any data.
    """
    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET is not configured; rejecting cron request.")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Not configured")
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        logger.warning("Cron request with a missing or invalid bearer token.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
