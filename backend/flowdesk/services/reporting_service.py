# Overview: Service-layer operations for reporting; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func

from flowdesk.extensions import db
from flowdesk.models import Sale, Invoice, Product, Customer
from flowdesk.time_utils import to_utc_z


def dashboard_summary(
    *,
    owner_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """
    Owner dashboard figures.

    - sales: count, gross total, refunds and net revenue in the range
    - invoices: outstanding balance and overdue count (cancelled excluded)
    - inventory: active product count, low-stock count, stock value at cost
    - customers: active customer count
    """
    sales_q = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.coalesce(func.sum(Sale.refund_cents), 0),
    ).filter(Sale.owner_id == owner_id, Sale.payment_status == "paid")
    if start:
        sales_q = sales_q.filter(Sale.created_at >= start)
    if end:
        sales_q = sales_q.filter(Sale.created_at < end)
    sales_count, gross_cents, refunds_cents = sales_q.one()

    outstanding_cents, open_invoices = db.session.query(
        func.coalesce(func.sum(Invoice.remaining_cents), 0),
        func.count(Invoice.id),
    ).filter(
        Invoice.owner_id == owner_id,
        Invoice.payment_status != "paid",
        Invoice.status != "cancelled",
    ).one()

    overdue_count = db.session.query(func.count(Invoice.id)).filter(
        Invoice.owner_id == owner_id,
        Invoice.status == "overdue",
    ).scalar()

    product_count, low_stock_count, stock_value_cents = db.session.query(
        func.count(Product.id),
        func.coalesce(func.sum(case((Product.is_low_stock.is_(True), 1), else_=0)), 0),
        func.coalesce(func.sum(Product.stock_quantity * Product.cost_price_cents), 0),
    ).filter(Product.owner_id == owner_id, Product.is_active.is_(True)).one()

    customer_count = db.session.query(func.count(Customer.id)).filter(
        Customer.owner_id == owner_id,
        Customer.status == "active",
    ).scalar()

    return {
        "range": {"start": to_utc_z(start), "end": to_utc_z(end)},
        "sales": {
            "count": int(sales_count),
            "gross_cents": int(gross_cents),
            "refunds_cents": int(refunds_cents),
            "net_cents": int(gross_cents) - int(refunds_cents),
        },
        "invoices": {
            "open_count": int(open_invoices),
            "outstanding_cents": int(outstanding_cents),
            "overdue_count": int(overdue_count or 0),
        },
        "inventory": {
            "product_count": int(product_count),
            "low_stock_count": int(low_stock_count),
            "stock_value_cents": int(stock_value_cents),
        },
        "customers": {
            "active_count": int(customer_count or 0),
        },
    }
