# app/models/rep.py
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Text, func
from sqlalchemy.orm import relationship
from sqlalchemy.schema import UniqueConstraint

from app.db.session import Base


class Rep(Base):
    __tablename__ = "reps"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    display_name = Column(String, nullable=True)

    # 'pending', 'active', 'suspended', 'deactivated'
    status = Column(String, nullable=False, default="pending", server_default="pending")

    # Cache of SUM(rep_points_log.points); only app/services/rep_points.py writes it
    points_balance = Column(Integer, nullable=False, default=0, server_default="0")
    currency_balance = Column(Integer, nullable=False, default=0, server_default="0")
    # Derived from points_balance and the tenant's thresholds
    level = Column(Integer, nullable=False, default=1, server_default="1")

    total_sales = Column(Integer, nullable=False, default=0, server_default="0")
    total_revenue = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RepEvent(Base):
    """Assignment of a rep to an event, with per-event sales aggregates."""
    __tablename__ = "rep_events"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    rep_id = Column(Integer, ForeignKey("reps.id"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    sales_count = Column(Integer, nullable=False, default=0, server_default="0")
    revenue = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")

    __table_args__ = (UniqueConstraint('rep_id', 'event_id', name='_rep_event_uc'),)


class RepPointsLog(Base):
    """Append-only ledger of point and currency deltas."""
    __tablename__ = "rep_points_log"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    rep_id = Column(Integer, ForeignKey("reps.id"), nullable=False, index=True)

    # Positive = award, negative = deduction
    points = Column(Integer, nullable=False)
    currency = Column(Integer, nullable=False, default=0, server_default="0")
    balance_after = Column(Integer, nullable=False)

    # 'sale', 'quest', 'manual', 'reward_spend', 'revocation', 'refund'
    source_type = Column(String, nullable=False, index=True)
    # Order id for 'sale' / 'refund'
    source_id = Column(String, nullable=True, index=True)
    description = Column(String, nullable=False)
    created_by = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    rep = relationship("Rep")


class RepReward(Base):
    __tablename__ = "rep_rewards"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    points_cost = Column(Integer, nullable=True)
    total_available = Column(Integer, nullable=True)
    total_claimed = Column(Integer, nullable=False, default=0, server_default="0")
    status = Column(String, nullable=False, default="active", server_default="active")


class RepMilestone(Base):
    __tablename__ = "rep_milestones"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    reward_id = Column(Integer, ForeignKey("rep_rewards.id"), nullable=False)

    # 'sales_count', 'revenue', 'points'
    milestone_type = Column(String, nullable=False)
    threshold_value = Column(Numeric(12, 2), nullable=False)
    # NULL = applies to every event
    event_id = Column(Integer, ForeignKey("events.id"), nullable=True)
    title = Column(String, nullable=False)

    reward = relationship("RepReward")


class RepRewardClaim(Base):
    __tablename__ = "rep_reward_claims"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    rep_id = Column(Integer, ForeignKey("reps.id"), nullable=False, index=True)
    reward_id = Column(Integer, ForeignKey("rep_rewards.id"), nullable=False)

    # 'milestone', 'points_shop', 'manual'
    claim_type = Column(String, nullable=False)
    milestone_id = Column(Integer, ForeignKey("rep_milestones.id"), nullable=True)
    points_spent = Column(Integer, nullable=False, default=0, server_default="0")

    # 'claimed', 'fulfilled', 'cancelled'
    status = Column(String, nullable=False, default="claimed", server_default="claimed")
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    milestone = relationship("RepMilestone")
