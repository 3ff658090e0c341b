# app/models/order.py
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, JSON, Text, func
from sqlalchemy.orm import relationship
from sqlalchemy.schema import UniqueConstraint

from app.db.session import Base


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    order_number = Column(String, nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)

    # 'completed', 'refunding' while the payment refund is in flight, or 'refunded'
    status = Column(String, nullable=False, default="completed", server_default="completed")

    subtotal = Column(Numeric(10, 2), nullable=False)
    fees = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")

    # 'stripe', 'test', 'admin', ...
    payment_method = Column(String, nullable=False)
    # External reference (PaymentIntent id), idempotency anchor
    payment_ref = Column(String, nullable=True)

    # VAT, discount_code, rep attribution stamp, merch linkage
    meta = Column("metadata", JSON, nullable=False, default=dict)

    refund_reason = Column(Text, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order")
    tickets = relationship("Ticket", back_populates="order")
    customer = relationship("Customer")
    event = relationship("Event")

    __table_args__ = (
        UniqueConstraint('org_id', 'order_number', name='_order_org_number_uc'),
        UniqueConstraint('org_id', 'payment_ref', name='_order_org_payment_ref_uc'),
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id"), nullable=False)
    qty = Column(Integer, nullable=False)
    # Price at time of sale, never re-derived
    unit_price = Column(Numeric(10, 2), nullable=False)
    merch_size = Column(String, nullable=True)

    order = relationship("Order", back_populates="items")
    ticket_type = relationship("TicketType")


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)

    ticket_code = Column(String, nullable=False, unique=True, index=True)
    holder_first_name = Column(String, nullable=True)
    holder_last_name = Column(String, nullable=True)
    holder_email = Column(String, nullable=True)
    merch_size = Column(String, nullable=True)

    # 'valid' or 'cancelled'
    status = Column(String, nullable=False, default="valid", server_default="valid")
    scanned_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="tickets")
    ticket_type = relationship("TicketType")
