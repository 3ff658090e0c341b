# app/models/cart.py
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, JSON

from app.db.session import Base
from app.models.lifecycle import LifecycleMixin


class AbandonedCart(LifecycleMixin, Base):
    """
    Checkout captured before payment. Lifecycle:
    pending -> abandoned -> (recovery emails) -> expired | recovered
    """
    __tablename__ = "abandoned_carts"
    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    email = Column(String, nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)

    # [{ticket_type_id, qty, name, price, merch_size}]
    items = Column(JSON, nullable=False, default=list)
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="GBP")

    # Token for the "resume checkout" link and unsubscribe link
    cart_token = Column(String, nullable=False, unique=True, index=True)

    discount_code = Column(String, nullable=True)
    discount_type = Column(String, nullable=True)
    discount_value = Column(Numeric(10, 2), nullable=True)

    recovered_at = Column(DateTime(timezone=True), nullable=True)
    recovered_order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
