# backend/flowdesk/services/products_service.py
"""
Products Service with Owner Scoping

MULTI-TENANT: All product operations are owner-scoped.
- SKUs are unique per owner (stored upper-cased)
- delete is a soft delete (is_active=False) so sale and invoice lines
  keep their product references
- every write that touches stock refreshes is_low_stock
"""
from __future__ import annotations
from flask import current_app
from ..extensions import db
from ..models import Product
from ..validation import ConflictError, NotFoundError, ValidationError
from flowdesk.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "description", "category", "brand",
    "cost_price_cents", "selling_price_cents", "wholesale_price_cents",
    "stock_quantity", "min_stock", "max_stock", "unit", "is_active",
}

STOCK_OPERATIONS = ("add", "subtract")


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)
    p.refresh_low_stock()


def _get_product(owner_id: int, product_id: int) -> Product:
    p = (
        db.session.query(Product)
        .filter(Product.id == product_id, Product.owner_id == owner_id)
        .first()
    )
    if not p:
        raise NotFoundError("Product not found")
    return p


def _ensure_sku_free(owner_id: int, sku: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Product).filter(Product.owner_id == owner_id, Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first():
        raise ConflictError("SKU already exists for this owner.")


def list_products(
    *,
    owner_id: int,
    search: str | None = None,
    category: str | None = None,
    low_stock: bool = False,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Owner-scoped product listing with optional pagination.

    Args:
        owner_id: Owner ID for tenant scoping
        search: Case-insensitive match on name, SKU, category or brand
        category: Exact category filter
        low_stock: Only products at or below their minimum stock
        include_inactive: Include soft-deleted products
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default 20, max 100)

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product).filter(Product.owner_id == owner_id)

    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        base_query = base_query.filter(
            db.or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.category.ilike(pattern),
                Product.brand.ilike(pattern),
            )
        )
    if category:
        base_query = base_query.filter(Product.category == category)
    if low_stock:
        base_query = base_query.filter(Product.is_low_stock.is_(True))

    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    # If no pagination requested, return all items
    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    # Pagination logic
    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)  # Ensure page >= 1

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_categories(*, owner_id: int) -> list[str]:
    rows = (
        db.session.query(Product.category)
        .filter(Product.owner_id == owner_id, Product.is_active.is_(True))
        .distinct()
        .order_by(Product.category.asc())
        .all()
    )
    return [r[0] for r in rows]


def get_product(*, owner_id: int, product_id: int) -> Product:
    return _get_product(owner_id, product_id)


def create_product(*, owner_id: int, patch: dict) -> Product:
    """Create product using a validated patch dict."""
    _ensure_sku_free(owner_id, patch["sku"])

    p = Product(owner_id=owner_id, stock_quantity=0, min_stock=5, unit="piece", is_active=True)
    apply_product_patch(p, patch)
    if p.stock_quantity:
        p.last_restocked_at = utcnow()

    db.session.add(p)
    db.session.commit()
    return p


def update_product(*, owner_id: int, product_id: int, patch: dict) -> Product:
    """
    Update a product.

    Retried on lock/stale errors: a concurrent sale bumps version_id.

    Raises:
        NotFoundError: If product does not belong to the owner
        ConflictError: If new SKU already exists for the owner
    """
    def _op():
        p = _get_product(owner_id, product_id)

        # SKU uniqueness enforcement if changing SKU
        if "sku" in patch and patch["sku"] != p.sku:
            _ensure_sku_free(owner_id, patch["sku"], exclude_id=p.id)

        apply_product_patch(p, patch)
        db.session.commit()
        return p

    return run_with_retry(_op)


def delete_product(*, owner_id: int, product_id: int) -> Product:
    """Soft-delete a product: preserve IDs and historical references."""
    p = _get_product(owner_id, product_id)
    if p.is_active:
        p.is_active = False
    db.session.commit()
    return p


def adjust_stock(*, owner_id: int, product_id: int, quantity: int, operation: str) -> Product:
    """
    Manual stock adjustment.

    add: restock, stamps last_restocked_at
    subtract: rejects if on-hand stock is lower than quantity
    """
    if operation not in STOCK_OPERATIONS:
        raise ValidationError(f"operation must be one of: {', '.join(STOCK_OPERATIONS)}")
    if quantity < 1:
        raise ValidationError("quantity must be at least 1")

    def _op():
        p = lock_for_update(
            db.session.query(Product).filter(Product.id == product_id, Product.owner_id == owner_id)
        ).first()
        if not p:
            raise NotFoundError("Product not found")

        if operation == "add":
            p.stock_quantity += quantity
            p.last_restocked_at = utcnow()
        else:
            if p.stock_quantity < quantity:
                raise ValidationError(
                    "Insufficient stock",
                    details={"product_id": p.id, "requested": quantity, "available": p.stock_quantity},
                )
            p.stock_quantity -= quantity

        p.refresh_low_stock()
        db.session.commit()
        current_app.logger.info(
            "Stock %s product_id=%s quantity=%s stock=%s", operation, p.id, quantity, p.stock_quantity
        )
        return p

    return run_with_retry(_op)
