# tests/test_rep_points.py

import pytest

from app.crud import rep as crud_rep
from app.models.notification import RepNotification
from app.models.rep import RepPointsLog
from app.schemas.settings import REP_PROGRAM_KEY
from app.services import rep_points
from tests.conftest import ORG_ID, seed_settings


@pytest.mark.parametrize("balance, expected", [
    (0, 1),
    (99, 1),
    (100, 2),
    (299, 2),
    (300, 3),
    (-50, 1),
])
def test_calculate_level(balance, expected):
    assert rep_points.calculate_level(balance, [100, 300, 600]) == expected


def test_calculate_level_is_capped():
    assert rep_points.calculate_level(10**6, [100, 300, 600]) == 4


def test_calculate_level_stops_at_first_unmet_threshold():
    # Thresholds out of order: the third is never reached through the second
    assert rep_points.calculate_level(500, [100, 1000, 200]) == 2


@pytest.mark.asyncio
async def test_ledger_sum_matches_cached_balance(db_session, mock_redis, test_rep, mock_resend):
    deltas = [150, -100, 40, -120]
    expected_balance = 0
    for delta in deltas:
        expected_balance += delta
        new_balance = await rep_points.award_points(
            db_session, mock_redis,
            org_id=ORG_ID, rep_id=test_rep.id, points=delta,
            source_type="manual", description=f"Adjustment {delta:+d}",
        )
        assert new_balance == expected_balance

    db_session.refresh(test_rep)
    assert test_rep.points_balance == expected_balance == -30
    assert crud_rep.get_ledger_balance(db_session, ORG_ID, test_rep.id) == test_rep.points_balance

    entries = db_session.query(RepPointsLog).filter_by(rep_id=test_rep.id).order_by(RepPointsLog.id).all()
    assert [e.points for e in entries] == deltas
    assert [e.balance_after for e in entries] == [150, 50, 90, -30]


@pytest.mark.asyncio
async def test_level_follows_balance_both_ways(db_session, mock_redis, test_rep, mock_resend):
    await rep_points.award_points(
        db_session, mock_redis, org_id=ORG_ID, rep_id=test_rep.id, points=150,
        source_type="quest", description="Quest complete",
    )
    db_session.refresh(test_rep)
    assert test_rep.level == 2

    await rep_points.deduct_points(
        db_session, mock_redis, org_id=ORG_ID, rep_id=test_rep.id, points=100,
        source_type="revocation", description="Quest revoked",
    )
    db_session.refresh(test_rep)
    assert test_rep.points_balance == 50
    assert test_rep.level == 1


@pytest.mark.asyncio
async def test_level_up_notifies_rep(db_session, mock_redis, test_rep, mock_resend):
    await rep_points.award_points(
        db_session, mock_redis, org_id=ORG_ID, rep_id=test_rep.id, points=100,
        source_type="manual", description="Bonus",
    )

    notification = db_session.query(RepNotification).filter_by(rep_id=test_rep.id, type="level_up").one()
    assert "Starter" in notification.title
    mock_resend.send_email.assert_awaited_once()


@pytest.mark.asyncio
async def test_tenant_thresholds_are_used(db_session, mock_redis, test_rep, mock_resend):
    seed_settings(db_session, REP_PROGRAM_KEY, {"level_thresholds": [10, 20]})

    await rep_points.award_points(
        db_session, mock_redis, org_id=ORG_ID, rep_id=test_rep.id, points=25,
        source_type="manual", description="Bonus",
    )
    db_session.refresh(test_rep)
    assert test_rep.level == 3


@pytest.mark.asyncio
async def test_unknown_rep_returns_none(db_session, mock_redis):
    result = await rep_points.award_points(
        db_session, mock_redis, org_id=ORG_ID, rep_id=404, points=10,
        source_type="manual", description="Nobody",
    )
    assert result is None
    assert db_session.query(RepPointsLog).count() == 0


@pytest.mark.asyncio
async def test_points_history_newest_first(db_session, mock_redis, test_rep, mock_resend):
    for delta in (10, 20, 30):
        await rep_points.award_points(
            db_session, mock_redis, org_id=ORG_ID, rep_id=test_rep.id, points=delta,
            source_type="manual", description=f"+{delta}",
        )
    db_session.refresh(test_rep)

    history = await rep_points.get_points_history(db_session, mock_redis, ORG_ID, test_rep, limit=2)

    assert history.balance == 60
    assert history.total == 3
    assert [e.points for e in history.entries] == [30, 20]
    assert history.level_name == "Rookie"
