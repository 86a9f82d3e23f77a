# Overview: Service-layer operations for invoices; encapsulates business logic and database work.

"""
Invoice Service - lifecycle derivation on every write

WHY: Invoice money fields and statuses are derived, never trusted from the
client. Every write path (create, update, payment, overdue refresh) ends in
_recompute(), which re-derives totals from the lines and state from the
payment facts via services/financials.py.

ORDER on every persist:
1. number (INV-{year}-{seq}) if unassigned, from the owner's yearly sequence
2. due date from payment terms if none was supplied
3. remaining = total - paid
4. payment status from paid vs total
5. status (paid / overdue / partial, otherwise the manual status)

DUE DATE: optional. A caller-supplied due date always wins; when absent it
is derived from payment_terms and issue_date. Changing payment_terms or
issue_date without a due date re-derives it.

MANUAL STATUS: clients may only set draft, sent or cancelled. paid,
partial and overdue are derived.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Invoice, InvoiceLine, Product, Customer, Owner
from ..models.invoices import (
    PAYMENT_TERMS,
    INVOICE_PAYMENT_METHODS,
    CURRENCIES,
)
from ..validation import ValidationError, NotFoundError, coerce_int, coerce_datetime
from flowdesk.time_utils import utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .document_service import next_document_number, invoice_period
from .financials import (
    LineInput,
    derive_invoice_totals,
    derive_invoice_state,
    compute_due_date,
)

MANUAL_STATUSES = ("draft", "sent", "cancelled")
INVOICE_UPDATE_FIELDS = {
    "customer_id", "lines", "payment_terms", "payment_method", "issue_date",
    "due_date", "currency", "status", "notes", "terms",
}
NON_NULL_UPDATE_FIELDS = ("customer_id", "lines", "payment_terms", "issue_date", "currency", "status")


def _get_owner(owner_id: int) -> Owner:
    owner = db.session.get(Owner, owner_id)
    if owner is None or not owner.is_active:
        raise NotFoundError("Owner not found")
    return owner


def _require_customer(owner_id: int, customer_id) -> Customer:
    if customer_id is None:
        raise ValidationError("customer_id is required")
    customer_id = coerce_int("customer_id", customer_id)
    customer = (
        db.session.query(Customer)
        .filter(Customer.id == customer_id, Customer.owner_id == owner_id)
        .first()
    )
    if not customer:
        raise ValidationError("Customer not found", details={"customer_id": customer_id})
    return customer


def _validate_choices(
    *,
    payment_terms: str | None = None,
    payment_method: str | None = None,
    currency: str | None = None,
    status: str | None = None,
) -> None:
    if payment_terms is not None and payment_terms not in PAYMENT_TERMS:
        raise ValidationError(f"payment_terms must be one of: {', '.join(PAYMENT_TERMS)}")
    if payment_method is not None and payment_method not in INVOICE_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(INVOICE_PAYMENT_METHODS)}")
    if currency is not None and currency not in CURRENCIES:
        raise ValidationError(f"currency must be one of: {', '.join(CURRENCIES)}")
    if status is not None and status not in MANUAL_STATUSES:
        raise ValidationError(f"status can only be set to: {', '.join(MANUAL_STATUSES)}")


def _build_lines(owner_id: int, parsed_lines: list[dict]) -> list[InvoiceLine]:
    """Snapshot product name and price into new InvoiceLine rows."""
    product_ids = {line["product_id"] for line in parsed_lines}
    products = (
        db.session.query(Product)
        .filter(Product.owner_id == owner_id, Product.id.in_(product_ids))
        .all()
    )
    by_id = {p.id: p for p in products}

    missing = sorted(pid for pid in product_ids if pid not in by_id or not by_id[pid].is_active)
    if missing:
        raise ValidationError("Product not found", details={"product_ids": missing})

    lines = []
    for position, parsed in enumerate(parsed_lines):
        product = by_id[parsed["product_id"]]
        unit_price = parsed["unit_price_cents"]
        if unit_price is None:
            unit_price = product.selling_price_cents
        lines.append(InvoiceLine(
            position=position,
            product_id=product.id,
            name=product.name,
            description=parsed.get("description"),
            quantity=parsed["quantity"],
            unit_price_cents=unit_price,
            discount_bps=parsed.get("discount_bps", 0),
            tax_cents=parsed.get("tax_cents", 0),
        ))
    return lines


def _recompute(invoice: Invoice, now: datetime) -> None:
    """Re-derive every computed field of the invoice. Does not commit."""
    totals = derive_invoice_totals(
        LineInput(
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            discount_bps=line.discount_bps or 0,
            tax_cents=line.tax_cents or 0,
        )
        for line in invoice.lines
    )
    for line, line_totals in zip(invoice.lines, totals.lines):
        line.discount_cents = line_totals.discount_cents
        line.line_total_cents = line_totals.line_total_cents

    invoice.subtotal_cents = totals.subtotal_cents
    invoice.discount_cents = totals.discount_cents
    invoice.tax_cents = totals.tax_cents
    invoice.total_cents = totals.total_cents

    if invoice.due_date is None:
        invoice.due_date = compute_due_date(invoice.payment_terms, invoice.issue_date)

    state = derive_invoice_state(
        total_cents=invoice.total_cents,
        paid_cents=invoice.paid_cents or 0,
        current_status=invoice.status,
        due_date=invoice.due_date,
        paid_date=invoice.paid_date,
        now=now,
    )
    invoice.remaining_cents = state.remaining_cents
    invoice.payment_status = state.payment_status
    invoice.status = state.status
    invoice.paid_date = state.paid_date


def _check_paid_within_total(invoice: Invoice) -> None:
    if (invoice.paid_cents or 0) > invoice.total_cents:
        raise ValidationError(
            "Paid amount exceeds invoice total",
            details={"paid_cents": invoice.paid_cents, "total_cents": invoice.total_cents},
        )


def _load_invoice_for_update(owner_id: int, invoice_id: int) -> Invoice:
    invoice = lock_for_update(
        db.session.query(Invoice).filter(Invoice.id == invoice_id, Invoice.owner_id == owner_id)
    ).first()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def create_invoice(
    *,
    owner_id: int,
    customer_id: int,
    lines: list[dict],
    payment_terms: str = "net30",
    payment_method: str | None = None,
    issue_date: datetime | None = None,
    due_date: datetime | None = None,
    currency: str | None = None,
    status: str = "draft",
    paid_cents: int = 0,
    notes: str | None = None,
    terms: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    """
    Create an invoice from validated line dicts (see validation.validate_invoice_lines).

    Raises:
        ValidationError: bad enum values, unknown customer/product,
            negative amounts, paid amount above total
        NotFoundError: owner missing or inactive
        NumberingConflictError: number could not be allocated
    """
    _validate_choices(
        payment_terms=payment_terms,
        payment_method=payment_method,
        currency=currency,
        status=status,
    )
    if paid_cents < 0:
        raise ValidationError("paid_cents cannot be negative")
    if issue_date is not None:
        issue_date = coerce_datetime("issue_date", issue_date)
    if due_date is not None:
        due_date = coerce_datetime("due_date", due_date)

    def _op():
        current = now or utcnow()
        begin_write_transaction()
        owner = _get_owner(owner_id)
        customer = _require_customer(owner_id, customer_id)

        invoice = Invoice(
            owner_id=owner.id,
            customer_id=customer.id,
            currency=currency or owner.currency,
            status=status,
            payment_status="unpaid",
            payment_method=payment_method,
            payment_terms=payment_terms,
            issue_date=issue_date or current,
            due_date=due_date,
            paid_cents=paid_cents,
            notes=notes,
            terms=terms,
        )
        invoice.lines = _build_lines(owner.id, lines)
        _recompute(invoice, current)
        _check_paid_within_total(invoice)

        invoice.invoice_number = next_document_number(
            owner_id=owner.id,
            document_type="INVOICE",
            prefix="INV",
            period=invoice_period(current),
        )

        db.session.add(invoice)
        db.session.commit()
        current_app.logger.info(
            "Created invoice %s owner_id=%s total_cents=%s",
            invoice.invoice_number, owner.id, invoice.total_cents,
        )
        return invoice

    return run_with_retry(_op)


def update_invoice(*, owner_id: int, invoice_id: int, patch: dict, now: datetime | None = None) -> Invoice:
    """
    Patch an invoice and re-derive it.

    patch keys: customer_id, lines (already validated, replaces all lines),
    payment_terms, payment_method, issue_date, due_date, currency, status,
    notes, terms.
    """
    unknown = sorted(set(patch) - INVOICE_UPDATE_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")
    for field in NON_NULL_UPDATE_FIELDS:
        if field in patch and patch[field] is None:
            raise ValidationError(f"{field} cannot be null")

    _validate_choices(
        payment_terms=patch.get("payment_terms"),
        payment_method=patch.get("payment_method"),
        currency=patch.get("currency"),
        status=patch.get("status"),
    )

    def _op():
        current = now or utcnow()
        begin_write_transaction()
        invoice = _load_invoice_for_update(owner_id, invoice_id)

        if "customer_id" in patch:
            invoice.customer_id = _require_customer(owner_id, patch["customer_id"]).id
        if "lines" in patch:
            invoice.lines = _build_lines(owner_id, patch["lines"])
        for field in ("payment_terms", "payment_method", "currency", "notes", "terms"):
            if field in patch:
                setattr(invoice, field, patch[field])
        if "issue_date" in patch:
            invoice.issue_date = coerce_datetime("issue_date", patch["issue_date"])

        # due_date is NOT NULL; derive it here, before any query can autoflush
        if patch.get("due_date") is not None:
            invoice.due_date = coerce_datetime("due_date", patch["due_date"])
        elif "due_date" in patch or "payment_terms" in patch or "issue_date" in patch:
            invoice.due_date = compute_due_date(invoice.payment_terms, invoice.issue_date)

        if "status" in patch:
            invoice.status = patch["status"]

        _recompute(invoice, current)
        _check_paid_within_total(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def record_payment(
    *,
    owner_id: int,
    invoice_id: int,
    amount_cents: int,
    payment_method: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    """
    Record a payment against an invoice.

    Raises:
        ValidationError: amount <= 0, amount above remaining balance,
            invoice cancelled, unknown payment method
    """
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be positive")
    _validate_choices(payment_method=payment_method)

    def _op():
        current = now or utcnow()
        begin_write_transaction()
        invoice = _load_invoice_for_update(owner_id, invoice_id)

        if invoice.status == "cancelled":
            raise ValidationError("Cannot record payment on a cancelled invoice")
        if amount_cents > invoice.remaining_cents:
            raise ValidationError(
                "Payment exceeds remaining balance",
                details={"amount_cents": amount_cents, "remaining_cents": invoice.remaining_cents},
            )

        invoice.paid_cents = (invoice.paid_cents or 0) + amount_cents
        if payment_method:
            invoice.payment_method = payment_method

        _recompute(invoice, current)
        db.session.commit()
        current_app.logger.info(
            "Recorded payment on invoice %s amount_cents=%s remaining_cents=%s",
            invoice.invoice_number, amount_cents, invoice.remaining_cents,
        )
        return invoice

    return run_with_retry(_op)


def refresh_overdue(*, owner_id: int | None = None, now: datetime | None = None) -> int:
    """
    Re-derive state for every unpaid/partial invoice past its due date.

    Status is otherwise only derived on write, so invoices that passed
    their due date without being touched are swept here (CLI/API).
    Returns the number of invoices whose status changed.
    """
    def _op():
        current = now or utcnow()
        begin_write_transaction()
        q = db.session.query(Invoice).filter(
            Invoice.payment_status != "paid",
            Invoice.due_date < current,
            Invoice.status.notin_(("overdue", "cancelled")),
        )
        if owner_id is not None:
            q = q.filter(Invoice.owner_id == owner_id)

        changed = 0
        for invoice in q.all():
            before = invoice.status
            _recompute(invoice, current)
            if invoice.status != before:
                changed += 1
        db.session.commit()
        return changed

    changed = run_with_retry(_op)
    current_app.logger.info("Overdue refresh marked %s invoice(s)", changed)
    return changed


def get_invoice(*, owner_id: int, invoice_id: int) -> Invoice:
    invoice = (
        db.session.query(Invoice)
        .filter(Invoice.id == invoice_id, Invoice.owner_id == owner_id)
        .first()
    )
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def list_invoices(
    *,
    owner_id: int,
    status: str | None = None,
    payment_status: str | None = None,
    customer_id: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    base_query = db.session.query(Invoice).filter(Invoice.owner_id == owner_id)
    if status:
        base_query = base_query.filter(Invoice.status == status)
    if payment_status:
        base_query = base_query.filter(Invoice.payment_status == payment_status)
    if customer_id is not None:
        base_query = base_query.filter(Invoice.customer_id == customer_id)
    base_query = base_query.order_by(Invoice.issue_date.desc(), Invoice.id.desc())

    if page is None:
        invoices = base_query.all()
        return {"items": [i.to_dict(include_lines=False) for i in invoices], "count": len(invoices)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)
    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    invoices = base_query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [i.to_dict(include_lines=False) for i in invoices],
        "count": len(invoices),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
