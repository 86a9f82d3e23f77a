from __future__ import annotations

from ..extensions import db
from flowdesk.time_utils import to_utc_z

INVOICE_STATUSES = ("draft", "sent", "paid", "partial", "overdue", "cancelled")
INVOICE_PAYMENT_STATUSES = ("unpaid", "partial", "paid", "refunded")
PAYMENT_TERMS = ("immediate", "net15", "net30", "net45", "net60")
INVOICE_PAYMENT_METHODS = ("cash", "card", "transfer", "mobile", "credit", "cheque")
CURRENCIES = ("NGN", "KES", "GHS", "ZAR", "USD", "EUR")


class Invoice(db.Model):
    """
    Invoice document.

    DERIVED FIELDS: subtotal/discount/tax/total, remaining, payment_status
    and (partly) status are never accepted from clients. They are written
    only by services/invoice_service.py from services/financials.py, which
    runs on every create, update and payment.

    NUMBERING: invoice_number is "INV-{year}-{seq:04d}", allocated from the
    owner's per-year DocumentSequence.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "invoice_number", name="uq_invoices_owner_number"),
        db.Index("ix_invoices_owner_status", "owner_id", "status"),
        db.Index("ix_invoices_owner_due", "owner_id", "payment_status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    currency = db.Column(db.String(3), nullable=False, default="NGN")
    status = db.Column(db.String(16), nullable=False, default="draft")
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")
    payment_method = db.Column(db.String(16), nullable=True)
    payment_terms = db.Column(db.String(16), nullable=False, default="net30")

    issue_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    paid_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    terms = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    owner = db.relationship("Owner", backref=db.backref("invoices", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    lines = db.relationship(
        "InvoiceLine",
        back_populates="invoice",
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "currency": self.currency,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_terms": self.payment_terms,
            "issue_date": to_utc_z(self.issue_date),
            "due_date": to_utc_z(self.due_date),
            "paid_date": to_utc_z(self.paid_date),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "notes": self.notes,
            "terms": self.terms,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """
    Individual line items on an invoice.

    name and unit_price_cents are snapshots of the product at the time the
    line was written. discount_bps is a percentage in basis points applied
    to the gross (quantity x unit price); tax_cents is a flat amount.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    invoice = db.relationship("Invoice", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "position": self.position,
            "product_id": self.product_id,
            "name": self.name,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_bps": self.discount_bps,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
        }
