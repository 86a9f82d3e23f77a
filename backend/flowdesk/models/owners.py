from __future__ import annotations

from ..extensions import db
from flowdesk.time_utils import to_utc_z


class Owner(db.Model):
    """
    Business account that owns documents, products and customers.

    MULTI-TENANT: Every other row carries owner_id. Numbering sequences,
    SKU uniqueness and document numbers are all scoped per owner.

    Business settings used by the financial engine live here:
    - currency: default currency for new invoices and sales
    - tax_rate_bps: sale tax rate in basis points (750 = 7.5%)
    """
    __tablename__ = "owners"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)

    currency = db.Column(db.String(3), nullable=False, default="NGN")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Owner id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "currency": self.currency,
            "tax_rate_bps": self.tax_rate_bps,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
