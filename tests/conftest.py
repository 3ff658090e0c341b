# tests/conftest.py
import os

# Settings are read at import time, so the environment is prepared first
os.environ.setdefault("DATABASE_DSN", "sqlite://")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from app import dependencies
from app.core.config import settings
from app.db.session import Base
# Every model module, so create_all sees all tables
from app.models import announcement, cart, customer, discount, event, notification, order, rep, tenant  # noqa: F401
from app.models.discount import Discount
from app.models.event import Event, TicketType
from app.models.rep import Rep, RepEvent
from app.models.tenant import TenantSetting

ORG_ID = "org_test"
ADMIN_KEY = "test-admin-key"
CRON_SECRET = "test-cron-secret"

# One shared in-memory connection for every session in a test
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Known secrets regardless of the developer's environment."""
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    return settings


@pytest.fixture(scope="function")
def db_session(monkeypatch) -> Session:
    """
    Clean database for every test. Sessions opened by the code under test
    (background tasks, cron wrappers) land on the same database.
    """
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(dependencies, "SessionLocal", TestingSessionLocal)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mock_redis():
    """Empty cache: every settings read falls through to the database."""
    redis = AsyncMock()
    redis.get.return_value = None
    return redis


@pytest.fixture
def mock_resend(mocker):
    client = MagicMock()
    client.is_configured = True
    client.send_email = AsyncMock(return_value={"id": "email_123"})
    mocker.patch("app.services.email.resend_client", client)
    return client


@pytest.fixture
def background_tasks(mocker):
    """
    Collects the coroutines the order assembler would schedule, so a test
    can run them explicitly. Whatever is left is closed afterwards.
    """
    scheduled = []

    def _collect(coro, description):
        scheduled.append((description, coro))
        return None

    mocker.patch("app.services.order.fire_and_forget", side_effect=_collect)
    yield scheduled
    for _, coro in scheduled:
        coro.close()


async def run_scheduled(scheduled, prefix: str):
    """Awaits (and removes) the scheduled coroutines whose description starts with `prefix`."""
    results = []
    for item in list(scheduled):
        description, coro = item
        if description.startswith(prefix):
            scheduled.remove(item)
            results.append(await coro)
    return results


def seed_settings(db: Session, key: str, data: dict, org_id: str = ORG_ID) -> TenantSetting:
    row = TenantSetting(org_id=org_id, key=key, data=data)
    db.add(row)
    db.commit()
    return row


# --- Domain fixtures ---

@pytest.fixture
def now():
    return datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_event(db_session, now):
    event_obj = Event(
        org_id=ORG_ID,
        name="Warehouse Rave",
        slug="warehouse-rave",
        venue_name="Depot",
        date_start=now + timedelta(days=30),
        currency="GBP",
        status="active",
        tickets_live_at=now + timedelta(days=3),
    )
    db_session.add(event_obj)
    db_session.commit()
    return event_obj


@pytest.fixture
def ticket_types(db_session, test_event):
    general = TicketType(
        org_id=ORG_ID, event_id=test_event.id, name="General Admission",
        price=Decimal("20.00"), capacity=100, sold=0,
    )
    vip = TicketType(
        org_id=ORG_ID, event_id=test_event.id, name="VIP",
        price=Decimal("45.00"), capacity=10, sold=0,
    )
    db_session.add_all([general, vip])
    db_session.commit()
    return {"general": general, "vip": vip}


@pytest.fixture
def test_rep(db_session, test_event):
    rep_obj = Rep(
        org_id=ORG_ID, email="rep@example.com", first_name="Ava",
        display_name="Ava R", status="active",
    )
    db_session.add(rep_obj)
    db_session.flush()
    db_session.add(RepEvent(org_id=ORG_ID, rep_id=rep_obj.id, event_id=test_event.id))
    db_session.commit()
    return rep_obj


@pytest.fixture
def rep_discount(db_session, test_rep):
    discount_obj = Discount(
        org_id=ORG_ID, code="AVA10", type="percentage", value=Decimal("10"),
        status="active", rep_id=test_rep.id,
    )
    db_session.add(discount_obj)
    db_session.commit()
    return discount_obj


# --- HTTP client ---

@pytest_asyncio.fixture
async def client(db_session, mock_redis):
    from app.core.redis import get_redis_client
    from app.main import app

    app.dependency_overrides[dependencies.get_db] = lambda: db_session
    app.dependency_overrides[get_redis_client] = lambda: mock_redis
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_auth_headers():
    return {"X-Admin-Key": ADMIN_KEY, "X-Org-Id": ORG_ID}
