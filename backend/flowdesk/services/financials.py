# Overview: Pure financial derivations for invoices, sales and customer aggregates.

"""
Financial derivations

WHY: Every derived money field (line totals, subtotal, discount, tax, total,
remaining balance) and every derived status (invoice payment status and
lifecycle status, customer loyalty tier) is computed here, from inputs only.
Nothing in this module touches the database or reads the clock; callers pass
`now` explicitly. Services call these functions at the start of every write
path and overwrite whatever the client sent.

ROUNDING: Percentages are basis points (10000 = 100%). A percentage of an
amount is rounded half-up to the nearest cent.

COMPOSITION (not compounded):
- line gross      = quantity x unit price          (this is the line total)
- invoice line    discount = gross x discount_bps, tax = flat tax_cents
- sale            tax = (subtotal - discount) x owner tax rate
- document total  = subtotal - discount + tax
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from ..validation import ValidationError, MAX_BPS


PAYMENT_TERM_DAYS = {
    "immediate": 0,
    "net15": 15,
    "net30": 30,
    "net45": 45,
    "net60": 60,
}

# Lifetime spend thresholds in cents, highest first
LOYALTY_THRESHOLDS = (
    ("platinum", 1_000_000 * 100),
    ("gold", 500_000 * 100),
    ("silver", 100_000 * 100),
)
DEFAULT_LOYALTY_TIER = "bronze"

# Manual statuses a partial payment may move to "partial"; cancelled is kept
PARTIAL_FROM_STATUSES = ("draft", "sent")


@dataclass(frozen=True)
class LineInput:
    quantity: int
    unit_price_cents: int
    discount_bps: int = 0
    discount_cents: int = 0
    tax_cents: int = 0


@dataclass(frozen=True)
class LineTotals:
    gross_cents: int
    discount_cents: int
    tax_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.gross_cents


@dataclass(frozen=True)
class DocumentTotals:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int
    lines: tuple[LineTotals, ...]


@dataclass(frozen=True)
class InvoiceState:
    remaining_cents: int
    payment_status: str
    status: str
    paid_date: Optional[datetime]


def percent_of(amount_cents: int, bps: int) -> int:
    """Basis-point share of a non-negative amount, rounded half-up."""
    return (amount_cents * bps + MAX_BPS // 2) // MAX_BPS


def _check_line(index: int, line: LineInput) -> None:
    if line.quantity < 1:
        raise ValidationError(f"lines[{index}].quantity must be at least 1")
    if line.unit_price_cents < 0:
        raise ValidationError(f"lines[{index}].unit_price_cents cannot be negative")
    if line.discount_bps < 0 or line.discount_bps > MAX_BPS:
        raise ValidationError(f"lines[{index}].discount_bps must be between 0 and {MAX_BPS}")
    if line.discount_cents < 0:
        raise ValidationError(f"lines[{index}].discount_cents cannot be negative")
    if line.tax_cents < 0:
        raise ValidationError(f"lines[{index}].tax_cents cannot be negative")


def _finish(line_totals: list[LineTotals], tax_cents: int) -> DocumentTotals:
    subtotal = sum(t.gross_cents for t in line_totals)
    discount = sum(t.discount_cents for t in line_totals)
    total = subtotal - discount + tax_cents
    if total < 0:
        raise ValidationError("total cannot be negative")
    return DocumentTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        tax_cents=tax_cents,
        total_cents=total,
        lines=tuple(line_totals),
    )


def derive_invoice_totals(lines: Iterable[LineInput]) -> DocumentTotals:
    """
    Invoice totals from lines.

    Line discount is a percentage of the line gross; line tax is a flat
    amount. Document discount and tax are the sums over lines.
    """
    line_totals = []
    for i, line in enumerate(lines):
        _check_line(i, line)
        gross = line.quantity * line.unit_price_cents
        line_totals.append(LineTotals(
            gross_cents=gross,
            discount_cents=percent_of(gross, line.discount_bps),
            tax_cents=line.tax_cents,
        ))
    if not line_totals:
        raise ValidationError("At least one line is required")
    return _finish(line_totals, sum(t.tax_cents for t in line_totals))


def derive_sale_totals(lines: Iterable[LineInput], tax_rate_bps: int) -> DocumentTotals:
    """
    Sale totals from lines.

    Line discount is an amount and may not exceed the line gross. Tax is
    charged once on the discounted subtotal at the owner's rate.
    """
    if tax_rate_bps < 0 or tax_rate_bps > MAX_BPS:
        raise ValidationError(f"tax_rate_bps must be between 0 and {MAX_BPS}")

    line_totals = []
    for i, line in enumerate(lines):
        _check_line(i, line)
        gross = line.quantity * line.unit_price_cents
        if line.discount_cents > gross:
            raise ValidationError(f"lines[{i}].discount_cents cannot exceed the line amount")
        line_totals.append(LineTotals(gross_cents=gross, discount_cents=line.discount_cents, tax_cents=0))
    if not line_totals:
        raise ValidationError("At least one line is required")

    taxable = sum(t.gross_cents - t.discount_cents for t in line_totals)
    return _finish(line_totals, percent_of(taxable, tax_rate_bps))


def compute_due_date(payment_terms: str, issue_date: datetime) -> datetime:
    """immediate -> issue date; netN -> issue date + N days."""
    if payment_terms not in PAYMENT_TERM_DAYS:
        raise ValidationError(f"payment_terms must be one of: {', '.join(PAYMENT_TERM_DAYS)}")
    return issue_date + timedelta(days=PAYMENT_TERM_DAYS[payment_terms])


def derive_payment_status(total_cents: int, paid_cents: int) -> str:
    if paid_cents == 0:
        return "unpaid"
    if paid_cents >= total_cents:
        return "paid"
    return "partial"


def derive_invoice_state(
    *,
    total_cents: int,
    paid_cents: int,
    current_status: str,
    due_date: datetime,
    paid_date: Optional[datetime],
    now: datetime,
) -> InvoiceState:
    """
    Payment and lifecycle state of an invoice.

    - paid -> status paid, paid_date stamped once
    - unpaid/partial and past due -> status overdue
    - partial and not past due -> status partial, from draft or sent only
    - otherwise the caller's status (draft, sent, cancelled, ...) is kept
    """
    if total_cents < 0:
        raise ValidationError("total cannot be negative")
    if paid_cents < 0:
        raise ValidationError("paid amount cannot be negative")

    payment_status = derive_payment_status(total_cents, paid_cents)

    status = current_status
    if payment_status == "paid":
        status = "paid"
        if paid_date is None:
            paid_date = now
    elif due_date < now:
        status = "overdue"
    elif payment_status == "partial" and current_status in PARTIAL_FROM_STATUSES:
        status = "partial"

    return InvoiceState(
        remaining_cents=total_cents - paid_cents,
        payment_status=payment_status,
        status=status,
        paid_date=paid_date,
    )


def loyalty_tier(total_spent_cents: int) -> str:
    for tier, threshold in LOYALTY_THRESHOLDS:
        if total_spent_cents >= threshold:
            return tier
    return DEFAULT_LOYALTY_TIER


def average_order_value(total_spent_cents: int, total_purchases: int) -> int:
    if total_purchases <= 0:
        return 0
    return (total_spent_cents + total_purchases // 2) // total_purchases
