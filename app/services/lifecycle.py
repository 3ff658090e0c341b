# app/services/lifecycle.py
"""
Step engine shared by every timed email sequence (abandoned carts, announcement signups).

A record's `notification_count` is the pointer to its next unsent step.
The pointer only moves through `advance_pointer`, a single conditional
UPDATE guarded by the expected status and count: when two sweeps race,
the loser's update matches zero rows and it backs off without sending again.
"""
import enum
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class StepOutcome(str, enum.Enum):
    SENT = "sent"
    SKIPPED = "skipped"          # opted out / step disabled, pointer advanced without sending
    SUPPRESSED = "suppressed"    # record no longer actionable, moved to a terminal status
    RACE_LOST = "race_lost"      # state changed under us, nothing done
    FAILED = "failed"            # dispatch failed, pointer left for the next run


class BatchBudget:
    """Caps how many records one sweep run may touch."""

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    def take(self) -> bool:
        if self.exhausted:
            return False
        self.used += 1
        return True


# --- State transitions (all single conditional UPDATEs, committed immediately) ---

def promote_pending(db: Session, model: Type, org_id: str, grace: timedelta, now: datetime) -> int:
    """pending -> abandoned once the grace window since creation has passed."""
    count = db.query(model).filter(
        model.org_id == org_id,
        model.status == "pending",
        model.created_at < now - grace,
    ).update({model.status: "abandoned"}, synchronize_session=False)
    db.commit()
    if count:
        logger.info(f"Org {org_id}: promoted {count} {model.__tablename__} record(s) to 'abandoned'.")
    return count


def expire_stale(
    db: Session, model: Type, org_id: str, horizon: timedelta, now: datetime, active_status: str = "abandoned"
) -> int:
    """active -> expired once the record is older than the horizon."""
    count = db.query(model).filter(
        model.org_id == org_id,
        model.status == active_status,
        model.created_at < now - horizon,
    ).update({model.status: "expired"}, synchronize_session=False)
    db.commit()
    if count:
        logger.info(f"Org {org_id}: expired {count} {model.__tablename__} record(s).")
    return count


def advance_pointer(
    db: Session,
    model: Type,
    record_id: int,
    expected_count: int,
    *,
    active_status: str,
    now: datetime,
    target_count: Optional[int] = None,
    extra_values: Optional[Dict[Any, Any]] = None,
) -> bool:
    """
    Compare-and-swap on the step pointer. Returns True only for the writer
    whose update matched (status and count unchanged since it looked).
    """
    target = expected_count + 1 if target_count is None else target_count
    values = {model.notification_count: target, model.notified_at: now}
    if extra_values:
        values.update(extra_values)
    updated = db.query(model).filter(
        model.id == record_id,
        model.status == active_status,
        model.notification_count == expected_count,
    ).update(values, synchronize_session=False)
    db.commit()
    return updated == 1


def mark_terminal(db: Session, model: Type, record_id: int, status: str, *, active_status: str) -> bool:
    """Moves an active record to a terminal status; no-op if it already left."""
    updated = db.query(model).filter(
        model.id == record_id,
        model.status == active_status,
    ).update({model.status: status}, synchronize_session=False)
    db.commit()
    return updated == 1


def fetch_due(
    db: Session,
    model: Type,
    org_id: str,
    *,
    active_status: str,
    step_counts: Sequence[int],
    limit: int,
    created_before: Optional[datetime] = None,
    joins: Iterable[Tuple[Any, Any]] = (),
    criteria: Iterable[Any] = (),
) -> List[Any]:
    """Records of one tenant sitting at one of `step_counts`, oldest first."""
    if limit <= 0:
        return []
    query = db.query(model)
    for target, onclause in joins:
        query = query.join(target, onclause)
    query = query.filter(
        model.org_id == org_id,
        model.status == active_status,
        model.notification_count.in_(list(step_counts)),
    )
    if created_before is not None:
        query = query.filter(model.created_at < created_before)
    for criterion in criteria:
        query = query.filter(criterion)
    return query.order_by(model.created_at.asc(), model.id.asc()).limit(limit).all()


def read_fresh_state(db: Session, model: Type, record_id: int) -> Optional[Tuple[str, int, Optional[datetime]]]:
    """Second read straight from the database, bypassing the identity map."""
    return db.query(model.status, model.notification_count, model.unsubscribed_at).filter(
        model.id == record_id
    ).one_or_none()


# --- Per-record pipeline ---

async def process_step(
    db: Session,
    model: Type,
    record: Any,
    *,
    step_count: int,
    active_status: str,
    now: datetime,
    opted_out: bool,
    step_enabled: bool,
    suppress: Callable[[Any], Optional[str]],
    dispatch: Callable[[], Awaitable[bool]],
    target_count: Optional[int] = None,
    extra_values: Optional[Dict[Any, Any]] = None,
) -> StepOutcome:
    """
    Runs one record through one step:
      a. opted out / step disabled  -> advance without sending
      b. no longer actionable       -> terminal status from `suppress`
      c. fresh re-read              -> back off if the record moved
      d. dispatch
      e. success                    -> CAS advance
      f. failure                    -> leave the pointer for the next run
    """
    record_id = record.id

    # a. Opt-out or merchant-disabled step: keep the record moving
    if opted_out or not step_enabled:
        advanced = advance_pointer(
            db, model, record_id, step_count, active_status=active_status, now=now,
            target_count=target_count, extra_values=extra_values,
        )
        return StepOutcome.SKIPPED if advanced else StepOutcome.RACE_LOST

    # b. Suppression rules
    terminal_status = suppress(record)
    if terminal_status:
        if mark_terminal(db, model, record_id, terminal_status, active_status=active_status):
            logger.info(f"{model.__tablename__} {record_id}: suppressed -> '{terminal_status}'.")
            return StepOutcome.SUPPRESSED
        return StepOutcome.RACE_LOST

    # c. Fresh status check right before sending
    fresh = read_fresh_state(db, model, record_id)
    if fresh is None:
        return StepOutcome.RACE_LOST
    fresh_status, fresh_count, fresh_unsubscribed = fresh
    if fresh_status != active_status or fresh_count != step_count or fresh_unsubscribed is not None:
        logger.info(f"{model.__tablename__} {record_id}: state changed before send, skipping.")
        return StepOutcome.RACE_LOST

    # d. Dispatch
    sent = await dispatch()
    if not sent:
        logger.warning(f"{model.__tablename__} {record_id}: dispatch failed for step {step_count}, will retry next run.")
        return StepOutcome.FAILED

    # e. Advance; a lost CAS here means another run already advanced
    if advance_pointer(
        db, model, record_id, step_count, active_status=active_status, now=now,
        target_count=target_count, extra_values=extra_values,
    ):
        return StepOutcome.SENT
    logger.warning(f"{model.__tablename__} {record_id}: sent step {step_count} but pointer was already advanced.")
    return StepOutcome.RACE_LOST


def count_outcome(summary, outcome: StepOutcome) -> None:
    """Adds one outcome to a SweepSummary."""
    if outcome is StepOutcome.SENT:
        summary.sent += 1
    elif outcome is StepOutcome.SKIPPED:
        summary.skipped += 1
    elif outcome is StepOutcome.SUPPRESSED:
        summary.suppressed += 1
    elif outcome is StepOutcome.RACE_LOST:
        summary.race_lost += 1
    else:
        summary.failed += 1
