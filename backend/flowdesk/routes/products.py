# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/flowdesk/routes/products.py
"""
Product management routes.

MULTI-TENANT: All product operations are scoped to the caller's owner.
The owner_id is derived from g.owner_id (set by @require_owner).
"""
from flask import Blueprint, request, g, current_app
from ..services import products_service
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    coerce_int,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_owner

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "category", "brand",
        "cost_price_cents", "selling_price_cents", "wholesale_price_cents",
        "stock_quantity", "min_stock", "max_stock", "unit", "is_active",
    },
    required_on_create={"sku", "name", "category", "cost_price_cents", "selling_price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_owner
def list_products():
    """
    List products with optional filters and pagination.

    Query params:
    - search: str (optional) - matches name, SKU, category, brand
    - category: str (optional)
    - low_stock: "true" (optional) - only products at or below min stock
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return products_service.list_products(
        owner_id=g.owner_id,
        search=request.args.get("search"),
        category=request.args.get("category"),
        low_stock=request.args.get("low_stock", "").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/categories")
@require_owner
def list_categories():
    return {"items": products_service.list_categories(owner_id=g.owner_id)}


@products_bp.post("")
@require_owner
def create_product_route():
    """Create a new product in the caller's catalog."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(owner_id=g.owner_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409

    return {"product": created.to_dict()}, 201


@products_bp.get("/<int:product_id>")
@require_owner
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(owner_id=g.owner_id, product_id=product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"product": product.to_dict()}, 200


@products_bp.patch("/<int:product_id>")
@require_owner
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(owner_id=g.owner_id, product_id=product_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500

    return {"product": updated.to_dict()}, 200


@products_bp.delete("/<int:product_id>")
@require_owner
def delete_product_route(product_id: int):
    """Soft-delete a product (is_active=false)."""
    try:
        products_service.delete_product(owner_id=g.owner_id, product_id=product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"ok": True}, 200


@products_bp.post("/<int:product_id>/stock")
@require_owner
def adjust_stock_route(product_id: int):
    """
    Manual stock adjustment.

    Body: {"quantity": int >= 1, "operation": "add" | "subtract"}
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("quantity") is None or not data.get("operation"):
            raise ValidationError("quantity and operation required")
        product = products_service.adjust_stock(
            owner_id=g.owner_id,
            product_id=product_id,
            quantity=coerce_int("quantity", data["quantity"]),
            operation=data["operation"],
        )
    except ValidationError as e:
        return {"error": str(e), "details": e.details}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict()}, 200
