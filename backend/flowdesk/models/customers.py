from __future__ import annotations

from ..extensions import db
from flowdesk.time_utils import to_utc_z

CUSTOMER_TYPES = ("individual", "business")
CUSTOMER_STATUSES = ("active", "inactive", "blocked")
LOYALTY_STATUSES = ("bronze", "silver", "gold", "platinum")


class Customer(db.Model):
    """
    Customer master data for tracking purchases and loyalty.

    MULTI-TENANT: Customers are scoped to owners via owner_id.

    WHY: Enables customer lifetime value tracking and loyalty tiers.
    The aggregate columns are denormalized and only ever written by the
    sale transaction (see services/customer_service.apply_sale_to_customer).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "email", name="uq_customers_owner_email"),
        db.Index("ix_customers_owner_status", "owner_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=False)
    customer_type = db.Column(db.String(16), nullable=False, default="individual")
    company_name = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active")

    # Denormalized aggregates (updated when sales are completed)
    total_purchases = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    average_order_value_cents = db.Column(db.Integer, nullable=False, default=0)
    first_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)
    loyalty_status = db.Column(db.String(16), nullable=False, default="bronze")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    owner = db.relationship("Owner", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "customer_type": self.customer_type,
            "company_name": self.company_name,
            "notes": self.notes,
            "status": self.status,
            "total_purchases": self.total_purchases,
            "total_spent_cents": self.total_spent_cents,
            "average_order_value_cents": self.average_order_value_cents,
            "first_purchase_at": to_utc_z(self.first_purchase_at),
            "last_purchase_at": to_utc_z(self.last_purchase_at),
            "loyalty_status": self.loyalty_status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
