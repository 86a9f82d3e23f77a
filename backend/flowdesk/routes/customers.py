# Overview: Flask API routes for customers; parses input and returns JSON responses.

from flask import Blueprint, request, g, current_app
from ..services import customer_service
from ..models import Customer
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_owner

# Aggregates (total_spent_cents, loyalty_status, ...) are engine-owned and not writable.
CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "customer_type", "company_name", "notes", "status"},
    required_on_create={"name", "phone"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_owner
def list_customers():
    return customer_service.list_customers(
        owner_id=g.owner_id,
        search=request.args.get("search"),
        status=request.args.get("status"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@customers_bp.post("")
@require_owner
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        customer = customer_service.create_customer(owner_id=g.owner_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    return {"customer": customer.to_dict()}, 201


@customers_bp.get("/<int:customer_id>")
@require_owner
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(owner_id=g.owner_id, customer_id=customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"customer": customer.to_dict()}, 200


@customers_bp.patch("/<int:customer_id>")
@require_owner
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
        customer = customer_service.update_customer(owner_id=g.owner_id, customer_id=customer_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return {"error": "Internal server error"}, 500
    return {"customer": customer.to_dict()}, 200


@customers_bp.delete("/<int:customer_id>")
@require_owner
def delete_customer_route(customer_id: int):
    """Deactivate a customer; purchase history is kept."""
    try:
        customer_service.delete_customer(owner_id=g.owner_id, customer_id=customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"ok": True}, 200
