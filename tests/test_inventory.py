# tests/test_inventory.py

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.crud import inventory as crud_inventory
from app.db.session import Base
from app.models.event import Event, TicketType
from tests.conftest import ORG_ID


def test_increment_and_decrement(db_session, ticket_types):
    tt = ticket_types["general"]

    assert crud_inventory.increment_sold(db_session, tt.id, 3) is True
    db_session.commit()
    assert crud_inventory.get_sold(db_session, tt.id) == 3

    assert crud_inventory.decrement_sold(db_session, tt.id, 2) is True
    db_session.commit()
    assert crud_inventory.get_sold(db_session, tt.id) == 1


def test_decrement_never_goes_below_zero(db_session, ticket_types):
    tt = ticket_types["general"]
    crud_inventory.increment_sold(db_session, tt.id, 1)
    db_session.commit()

    crud_inventory.decrement_sold(db_session, tt.id, 5)
    db_session.commit()

    assert crud_inventory.get_sold(db_session, tt.id) == 0


def test_unknown_ticket_type_reports_no_row(db_session, ticket_types):
    assert crud_inventory.increment_sold(db_session, 9999, 1) is False
    assert crud_inventory.decrement_sold(db_session, 9999, 1) is False


def test_increment_within_capacity_refuses_oversell(db_session, test_event):
    tt = TicketType(org_id=ORG_ID, event_id=test_event.id, name="Early Bird", price=Decimal("10.00"), capacity=3, sold=0)
    db_session.add(tt)
    db_session.commit()

    assert crud_inventory.increment_sold_within_capacity(db_session, tt.id, 2) is True
    assert crud_inventory.increment_sold_within_capacity(db_session, tt.id, 2) is False
    assert crud_inventory.increment_sold_within_capacity(db_session, tt.id, 1) is True
    db_session.commit()

    assert crud_inventory.get_sold(db_session, tt.id) == 3


def test_batch_fetch_is_scoped_to_tenant(db_session, ticket_types):
    ids = [ticket_types["general"].id, ticket_types["vip"].id]

    assert {tt.id for tt in crud_inventory.get_ticket_types_for_org(db_session, ORG_ID, ids)} == set(ids)
    assert crud_inventory.get_ticket_types_for_org(db_session, "other_org", ids) == []
    assert crud_inventory.get_ticket_types_for_org(db_session, ORG_ID, []) == []


def test_concurrent_increments_are_not_lost(tmp_path):
    """Parallel checkouts on separate connections: every unit is counted."""
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'inventory.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    FileSession = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)

    with FileSession() as db:
        event_obj = Event(org_id=ORG_ID, name="Load Test", status="active")
        db.add(event_obj)
        db.flush()
        tt = TicketType(org_id=ORG_ID, event_id=event_obj.id, name="GA", price=Decimal("5.00"), sold=0)
        db.add(tt)
        db.commit()
        ticket_type_id = tt.id

    workers, per_worker = 8, 5

    def checkout():
        for _ in range(per_worker):
            with FileSession() as db:
                assert crud_inventory.increment_sold(db, ticket_type_id, 1)
                db.commit()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(checkout) for _ in range(workers)]
        for future in futures:
            future.result()

    with FileSession() as db:
        assert crud_inventory.get_sold(db, ticket_type_id) == workers * per_worker

    file_engine.dispose()


@pytest.mark.parametrize("qty", [1, 4])
def test_increment_returns_true_for_existing_row(db_session, ticket_types, qty):
    assert crud_inventory.increment_sold(db_session, ticket_types["vip"].id, qty)
    db_session.commit()
    assert crud_inventory.get_sold(db_session, ticket_types["vip"].id) == qty
