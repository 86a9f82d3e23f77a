from __future__ import annotations

from ..extensions import db
from flowdesk.time_utils import to_utc_z

PRODUCT_UNITS = ("piece", "kg", "g", "liter", "ml", "meter", "cm", "box", "pack")


class Product(db.Model):
    """
    Catalog entry with pricing and on-hand stock.

    MULTI-TENANT: Products are scoped to owners via owner_id.
    SKUs are unique within an owner and stored upper-cased.

    STOCK: stock_quantity is the authoritative on-hand count. Sales
    decrement it inside the sale transaction; stock is never allowed to
    go negative through the engine (insufficient stock rejects the sale).

    is_low_stock is derived (stock_quantity <= min_stock) and refreshed by
    refresh_low_stock() on every write path that touches stock.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "sku", name="uq_products_owner_sku"),
        db.Index("ix_products_owner_name", "owner_id", "name"),
        db.Index("ix_products_owner_low_stock", "owner_id", "is_low_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    category = db.Column(db.String(64), nullable=False)
    brand = db.Column(db.String(64), nullable=True)

    # Pricing in cents
    cost_price_cents = db.Column(db.Integer, nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)

    # Inventory
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=5)
    max_stock = db.Column(db.Integer, nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="piece")
    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_low_stock = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    owner = db.relationship("Owner", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def refresh_low_stock(self) -> None:
        self.is_low_stock = (self.stock_quantity or 0) <= (self.min_stock or 0)

    @property
    def stock_value_cents(self) -> int:
        return (self.stock_quantity or 0) * (self.cost_price_cents or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} owner_id={self.owner_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "brand": self.brand,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "stock_quantity": self.stock_quantity,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "unit": self.unit,
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "is_low_stock": self.is_low_stock,
            "stock_value_cents": self.stock_value_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
