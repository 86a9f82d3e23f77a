# backend/flowdesk/services/customer_service.py
"""
Customer Service

MULTI-TENANT: Every lookup is filtered by owner_id; a customer id that
belongs to another owner behaves exactly like a missing one.

AGGREGATES: total_purchases, total_spent_cents, average order value,
first/last purchase dates and loyalty_status are engine-owned. Clients
cannot write them; apply_sale_to_customer() is the only writer.
"""
from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Customer
from ..validation import ConflictError, NotFoundError
from .concurrency import run_with_retry
from .financials import loyalty_tier, average_order_value

CUSTOMER_MUTABLE_FIELDS = {"name", "email", "phone", "customer_type", "company_name", "notes", "status"}


def _get_customer(owner_id: int, customer_id: int) -> Customer:
    customer = (
        db.session.query(Customer)
        .filter(Customer.id == customer_id, Customer.owner_id == owner_id)
        .first()
    )
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def _ensure_email_free(owner_id: int, email: str | None, exclude_id: int | None = None) -> None:
    if not email:
        return
    q = db.session.query(Customer).filter(Customer.owner_id == owner_id, Customer.email == email)
    if exclude_id is not None:
        q = q.filter(Customer.id != exclude_id)
    if q.first():
        raise ConflictError("A customer with this email already exists.")


def list_customers(
    *,
    owner_id: int,
    search: str | None = None,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Owner-scoped customer listing with optional search, status filter and pagination."""
    base_query = db.session.query(Customer).filter(Customer.owner_id == owner_id)

    if search:
        pattern = f"%{search.strip()}%"
        base_query = base_query.filter(
            db.or_(
                Customer.name.ilike(pattern),
                Customer.email.ilike(pattern),
                Customer.phone.ilike(pattern),
                Customer.company_name.ilike(pattern),
            )
        )
    if status:
        base_query = base_query.filter(Customer.status == status)

    base_query = base_query.order_by(Customer.name.asc(), Customer.id.asc())

    if page is None:
        customers = base_query.all()
        return {"items": [c.to_dict() for c in customers], "count": len(customers)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)
    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    customers = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [c.to_dict() for c in customers],
        "count": len(customers),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_customer(*, owner_id: int, customer_id: int) -> Customer:
    return _get_customer(owner_id, customer_id)


def create_customer(*, owner_id: int, patch: dict) -> Customer:
    _ensure_email_free(owner_id, patch.get("email"))

    customer = Customer(
        owner_id=owner_id,
        customer_type="individual",
        status="active",
        total_purchases=0,
        total_spent_cents=0,
        average_order_value_cents=0,
        loyalty_status=loyalty_tier(0),
    )
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)

    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(*, owner_id: int, customer_id: int, patch: dict) -> Customer:
    def _op():
        customer = _get_customer(owner_id, customer_id)
        if "email" in patch:
            _ensure_email_free(owner_id, patch["email"], exclude_id=customer.id)

        for k, v in patch.items():
            if k in CUSTOMER_MUTABLE_FIELDS:
                setattr(customer, k, v)
        db.session.commit()
        return customer

    # sales bump version_id on the same row
    return run_with_retry(_op)


def delete_customer(*, owner_id: int, customer_id: int) -> Customer:
    """Soft-delete: customers referenced by sales and invoices are kept as inactive."""
    customer = _get_customer(owner_id, customer_id)
    customer.status = "inactive"
    db.session.commit()
    return customer


def apply_sale_to_customer(customer: Customer, sale_total_cents: int, occurred_at: datetime) -> None:
    """
    Fold one completed sale into the customer's aggregates.

    Called exactly once per sale, inside the sale transaction; does not
    commit.
    """
    customer.total_purchases = (customer.total_purchases or 0) + 1
    customer.total_spent_cents = (customer.total_spent_cents or 0) + sale_total_cents
    customer.last_purchase_at = occurred_at
    if customer.first_purchase_at is None:
        customer.first_purchase_at = occurred_at
    customer.loyalty_status = loyalty_tier(customer.total_spent_cents)
    customer.average_order_value_cents = average_order_value(
        customer.total_spent_cents, customer.total_purchases
    )
