from __future__ import annotations

from ..extensions import db
from flowdesk.time_utils import to_utc_z

SALE_PAYMENT_METHODS = ("cash", "card", "transfer", "mobile", "credit")
SALE_PAYMENT_STATUSES = ("paid", "pending", "failed")
SALE_CHANNELS = ("in-store", "online", "phone", "mobile-app")


class Sale(db.Model):
    """
    Point-of-sale document.

    WHY: A sale is recorded in one step. Creating it allocates the sale
    number, decrements stock for every line and updates the customer's
    aggregates inside a single transaction (services/sales_service.py).

    IMMUTABLE: After creation only the refund fields change.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "sale_number", name="uq_sales_owner_number"),
        db.Index("ix_sales_owner_created", "owner_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False, index=True)

    # Human-readable numbers (e.g., "SALE-202401-0001", "RCP-1704067200000")
    sale_number = db.Column(db.String(32), nullable=False)
    receipt_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(100), nullable=True)

    # Amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="paid")
    channel = db.Column(db.String(16), nullable=False, default="in-store")
    notes = db.Column(db.Text, nullable=True)

    # Refund audit trail
    refunded = db.Column(db.Boolean, nullable=False, default=False)
    refund_cents = db.Column(db.Integer, nullable=False, default=0)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    owner = db.relationship("Owner", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "sale_number": self.sale_number,
            "receipt_number": self.receipt_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "channel": self.channel,
            "notes": self.notes,
            "refunded": self.refunded,
            "refund_cents": self.refund_cents,
            "refunded_at": to_utc_z(self.refunded_at),
            "refund_reason": self.refund_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale document."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    name = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "position": self.position,
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
        }
