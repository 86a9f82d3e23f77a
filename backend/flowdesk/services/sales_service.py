"""
Sales Service - one-step sale recording with stock and customer side effects

WHY: A sale is only meaningful together with its side effects. Creating a
sale allocates its number, decrements stock for every line and folds the
sale into the customer's aggregates. All of it happens in one database
transaction: either every effect is committed or none is.

ORDER inside the transaction:
1. write lock (BEGIN IMMEDIATE on SQLite, FOR UPDATE on product/customer rows)
2. stock check for every product (aggregated over lines), before any write
3. totals from services/financials.py, sale/receipt numbers
4. stock decrement + low-stock flag, customer aggregates
5. commit

RETRIES: run_with_retry re-runs the whole unit on lock/stale errors, so a
retry re-reads stock and never decrements twice.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Sale, SaleLine, Product, Customer, Owner
from ..models.sales import SALE_PAYMENT_METHODS, SALE_PAYMENT_STATUSES, SALE_CHANNELS
from ..models.invoices import CURRENCIES
from ..validation import ValidationError, NotFoundError
from flowdesk.time_utils import utcnow, epoch_millis
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .document_service import next_document_number, sale_period, NumberingConflictError
from .customer_service import apply_sale_to_customer
from .financials import LineInput, derive_sale_totals


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(SaleError):
    """Raised when a sale asks for more units than a product has on hand."""


def _validate_on_hand(products: dict[int, Product], lines: list[dict]) -> None:
    product_totals: dict[int, int] = {}
    for line in lines:
        product_totals[line["product_id"]] = product_totals.get(line["product_id"], 0) + line["quantity"]

    insufficient = []
    for product_id, qty in product_totals.items():
        product = products[product_id]
        if product.stock_quantity < qty:
            insufficient.append({
                "product_id": product_id,
                "name": product.name,
                "requested_quantity": qty,
                "available_quantity": product.stock_quantity,
            })

    if insufficient:
        first = insufficient[0]
        raise InsufficientStockError(
            f"Insufficient stock for {first['name']}. "
            f"Requested: {first['requested_quantity']}, available: {first['available_quantity']}",
            details={"items": insufficient},
        )


def _lock_products(owner_id: int, lines: list[dict]) -> dict[int, Product]:
    product_ids = sorted({line["product_id"] for line in lines})
    products = lock_for_update(
        db.session.query(Product)
        .filter(Product.owner_id == owner_id, Product.id.in_(product_ids))
        .order_by(Product.id.asc())
    ).all()
    by_id = {p.id: p for p in products}

    missing = [pid for pid in product_ids if pid not in by_id or not by_id[pid].is_active]
    if missing:
        raise ValidationError("Product not found", details={"product_ids": missing})
    return by_id


def create_sale(
    *,
    owner_id: int,
    lines: list[dict],
    payment_method: str,
    customer_id: int | None = None,
    customer_name: str | None = None,
    payment_status: str = "paid",
    channel: str = "in-store",
    currency: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Sale:
    """
    Record a sale from validated line dicts (see validation.validate_sale_lines).

    Raises:
        ValidationError: bad enum values, unknown product or customer
        InsufficientStockError: any product has less stock than requested;
            nothing is written
        NumberingConflictError: sale number could not be allocated
        NotFoundError: owner missing or inactive
    """
    if payment_method not in SALE_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(SALE_PAYMENT_METHODS)}")
    if payment_status not in SALE_PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(SALE_PAYMENT_STATUSES)}")
    if channel not in SALE_CHANNELS:
        raise ValidationError(f"channel must be one of: {', '.join(SALE_CHANNELS)}")
    if currency is not None and currency not in CURRENCIES:
        raise ValidationError(f"currency must be one of: {', '.join(CURRENCIES)}")
    if not lines:
        raise ValidationError("Cannot record a sale with no lines")

    def _op():
        created_at = now or utcnow()
        begin_write_transaction()

        owner = db.session.get(Owner, owner_id)
        if owner is None or not owner.is_active:
            raise NotFoundError("Owner not found")

        products = _lock_products(owner.id, lines)

        customer = None
        if customer_id is not None:
            customer = lock_for_update(
                db.session.query(Customer).filter(Customer.id == customer_id, Customer.owner_id == owner.id)
            ).first()
            if not customer:
                raise ValidationError("Customer not found", details={"customer_id": customer_id})

        _validate_on_hand(products, lines)

        line_inputs = []
        for line in lines:
            unit_price = line.get("unit_price_cents")
            if unit_price is None:
                unit_price = products[line["product_id"]].selling_price_cents
            line_inputs.append(LineInput(
                quantity=line["quantity"],
                unit_price_cents=unit_price,
                discount_cents=line.get("discount_cents", 0),
            ))
        totals = derive_sale_totals(line_inputs, owner.tax_rate_bps)

        sale = Sale(
            owner_id=owner.id,
            sale_number=next_document_number(
                owner_id=owner.id,
                document_type="SALE",
                prefix="SALE",
                period=sale_period(created_at),
            ),
            receipt_number=f"RCP-{epoch_millis(created_at)}",
            customer_id=customer.id if customer else None,
            customer_name=customer.name if customer else customer_name,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            currency=currency or owner.currency,
            payment_method=payment_method,
            payment_status=payment_status,
            channel=channel,
            notes=notes,
            refunded=False,
            refund_cents=0,
            created_at=created_at,
        )
        for position, (line, line_input, line_totals) in enumerate(zip(lines, line_inputs, totals.lines)):
            product = products[line["product_id"]]
            sale.lines.append(SaleLine(
                position=position,
                product_id=product.id,
                name=product.name,
                quantity=line_input.quantity,
                unit_price_cents=line_input.unit_price_cents,
                discount_cents=line_totals.discount_cents,
                line_total_cents=line_totals.line_total_cents,
            ))

            product.stock_quantity -= line_input.quantity
            product.refresh_low_stock()

        if customer is not None:
            apply_sale_to_customer(customer, sale.total_cents, created_at)

        db.session.add(sale)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise NumberingConflictError(
                "Sale number already taken",
                details={"sale_number": sale.sale_number},
            ) from exc

        db.session.commit()
        current_app.logger.info(
            "Recorded sale %s owner_id=%s total_cents=%s lines=%s customer_id=%s",
            sale.sale_number, owner.id, sale.total_cents, len(sale.lines), sale.customer_id,
        )
        return sale

    return run_with_retry(_op)


def refund_sale(
    *,
    owner_id: int,
    sale_id: int,
    amount_cents: int,
    reason: str,
    now: datetime | None = None,
) -> Sale:
    """
    Refund a sale (once).

    Only the refund fields change; stock and customer aggregates are left
    as recorded.
    """
    if amount_cents <= 0:
        raise ValidationError("Refund amount must be positive")
    if not reason or not reason.strip():
        raise ValidationError("reason required")

    def _op():
        sale = lock_for_update(
            db.session.query(Sale).filter(Sale.id == sale_id, Sale.owner_id == owner_id)
        ).first()
        if not sale:
            raise NotFoundError("Sale not found")
        if sale.refunded:
            raise SaleError("Sale already refunded")
        if amount_cents > sale.total_cents:
            raise SaleError(
                "Refund exceeds sale total",
                details={"amount_cents": amount_cents, "total_cents": sale.total_cents},
            )

        sale.refunded = True
        sale.refund_cents = amount_cents
        sale.refunded_at = now or utcnow()
        sale.refund_reason = reason.strip()[:255]

        db.session.commit()
        current_app.logger.info("Refunded sale %s amount_cents=%s", sale.sale_number, amount_cents)
        return sale

    return run_with_retry(_op)


def get_sale(*, owner_id: int, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter(Sale.id == sale_id, Sale.owner_id == owner_id).first()
    if not sale:
        raise NotFoundError("Sale not found")
    return sale


def list_sales(
    *,
    owner_id: int,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    base_query = db.session.query(Sale).filter(Sale.owner_id == owner_id)
    if customer_id is not None:
        base_query = base_query.filter(Sale.customer_id == customer_id)
    if start is not None:
        base_query = base_query.filter(Sale.created_at >= start)
    if end is not None:
        base_query = base_query.filter(Sale.created_at < end)
    base_query = base_query.order_by(Sale.created_at.desc(), Sale.id.desc())

    if page is None:
        sales = base_query.all()
        return {"items": [s.to_dict(include_lines=False) for s in sales], "count": len(sales)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)
    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    sales = base_query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [s.to_dict(include_lines=False) for s in sales],
        "count": len(sales),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
