# Overview: Flask API routes for owner accounts and business settings.

from flask import Blueprint, request, g

from ..models import Owner
from ..services import owner_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_owner,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from ..decorators import require_owner

OWNER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "currency", "tax_rate_bps"},
    required_on_create={"name"},
)

owners_bp = Blueprint("owners", __name__, url_prefix="/api/owners")


@owners_bp.post("")
def create_owner_route():
    """Create a business account. Defaults come from app config."""
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Owner, payload=payload, policy=OWNER_POLICY, partial=False)
        enforce_rules_owner(patch)
        owner = owner_service.create_owner(patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    return {"owner": owner.to_dict()}, 201


@owners_bp.get("/me")
@require_owner
def get_current_owner():
    return {"owner": g.owner.to_dict()}, 200


@owners_bp.patch("/me")
@require_owner
def update_current_owner():
    """Update business settings (currency, sale tax rate) for the current owner."""
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Owner, payload=payload, policy=OWNER_POLICY, partial=True)
        enforce_rules_owner(patch)
        owner = owner_service.update_owner(owner_id=g.owner_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"owner": owner.to_dict()}, 200
