# app/models/event.py
from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, ForeignKey, DateTime, JSON, func, false,
)
from sqlalchemy.orm import relationship
from sqlalchemy.schema import CheckConstraint

from app.db.session import Base

# Events in these statuses still accept orders and lifecycle emails
ACTIONABLE_EVENT_STATUSES = ("active", "published")


class Event(Base):
    __tablename__ = "events"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=True, index=True)
    venue_name = Column(String, nullable=True)
    date_start = Column(DateTime(timezone=True), nullable=True)
    doors_time = Column(String, nullable=True)
    currency = Column(String(3), nullable=False, default="GBP", server_default="GBP")

    # 'draft', 'active', 'published', 'cancelled', 'past'
    status = Column(String, nullable=False, default="draft", server_default="draft")

    # Moment tickets go on sale, anchors the announcement sequence
    tickets_live_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ticket_types = relationship("TicketType", back_populates="event")


class TicketType(Base):
    __tablename__ = "ticket_types"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)

    # NULL means unlimited
    capacity = Column(Integer, nullable=True)
    # Only ever moved by the atomic helpers in app/crud/inventory.py
    sold = Column(Integer, nullable=False, default=0, server_default="0")

    # 'ticket' or 'merch_pass' (hidden sellable backing merch pre-orders)
    kind = Column(String, nullable=False, default="ticket", server_default="ticket")
    is_hidden = Column(Boolean, nullable=False, default=False, server_default=false())
    merch_name = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    event = relationship("Event", back_populates="ticket_types")

    __table_args__ = (CheckConstraint('sold >= 0', name='ck_ticket_types_sold_non_negative'),)


class MerchCollection(Base):
    __tablename__ = "merch_collections"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    title = Column(String, nullable=False)
    slug = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active", server_default="active")

    items = relationship("MerchCollectionItem", back_populates="collection")


class MerchCollectionItem(Base):
    __tablename__ = "merch_collection_items"
    id = Column(Integer, primary_key=True, index=True)
    collection_id = Column(Integer, ForeignKey("merch_collections.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    # Authoritative unit price for pre-orders
    price = Column(Numeric(10, 2), nullable=False)
    sizes = Column(JSON, nullable=True)

    collection = relationship("MerchCollection", back_populates="items")
