# app/crud/customer.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.customer import Customer
from app.models.order import Order


def get_customer_by_email(db: Session, org_id: str, email: str) -> Optional[Customer]:
    return db.query(Customer).filter(
        Customer.org_id == org_id, Customer.email == email.strip().lower()
    ).first()


def upsert_customer(
    db: Session,
    org_id: str,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
    now: datetime | None = None,
) -> Customer:
    """
    Finds the customer by (org, lowercased email), updating contact fields,
    or creates it. Flushes so the id is available; requires an external commit.
    """
    email = email.strip().lower()
    customer = get_customer_by_email(db, org_id, email)
    if customer:
        if first_name:
            customer.first_name = first_name
        if last_name:
            customer.last_name = last_name
        if phone:
            customer.phone = phone
    else:
        customer = Customer(
            org_id=org_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone or None,
            first_order_at=now,
            total_orders=0,
            total_spent=Decimal("0"),
        )
        db.add(customer)
    db.flush()
    return customer


def recompute_stats(db: Session, org_id: str, customer_id: int, now: datetime | None = None) -> Customer | None:
    """
    Rebuilds total_orders / total_spent from all completed orders so any
    earlier drift heals. Requires an external commit.
    """
    count, total, last_at = db.query(
        func.count(Order.id), func.coalesce(func.sum(Order.total), 0), func.max(Order.created_at)
    ).filter(
        Order.org_id == org_id,
        Order.customer_id == customer_id,
        Order.status == "completed",
    ).one()

    customer = db.get(Customer, customer_id)
    if customer is None:
        return None
    customer.total_orders = int(count or 0)
    customer.total_spent = Decimal(str(total or 0))
    if now is not None and count:
        customer.last_order_at = now
    elif last_at is not None:
        customer.last_order_at = last_at
    return customer
