# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/flowdesk/routes/invoices.py
"""
Invoice API routes.

Client-supplied totals, balances and derived statuses are ignored: the
service re-derives them from lines and payments on every write.
"""

from flask import Blueprint, request, g, current_app

from ..services import invoice_service
from ..services.document_service import DocumentSequenceError
from ..validation import (
    ValidationError,
    NotFoundError,
    validate_invoice_lines,
    coerce_int,
    coerce_datetime,
)
from ..decorators import require_owner


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

IGNORED_DERIVED_FIELDS = {
    "invoice_number", "subtotal_cents", "discount_cents", "tax_cents", "total_cents",
    "remaining_cents", "payment_status", "paid_date",
}


def _strip_derived(data: dict) -> dict:
    return {k: v for k, v in data.items() if k not in IGNORED_DERIVED_FIELDS}


@invoices_bp.post("")
@require_owner
def create_invoice_route():
    """
    Create an invoice.

    Body: customer_id, lines[{product_id, quantity, unit_price_cents?,
    discount_bps?, tax_cents?, description?}], payment_terms?, payment_method?,
    issue_date?, due_date?, currency?, status? (draft|sent), paid_cents?,
    notes?, terms?
    """
    data = _strip_derived(request.get_json(silent=True) or {})
    try:
        invoice = invoice_service.create_invoice(
            owner_id=g.owner_id,
            customer_id=data.get("customer_id"),
            lines=validate_invoice_lines(data.get("lines")),
            payment_terms=data.get("payment_terms") or "net30",
            payment_method=data.get("payment_method"),
            issue_date=coerce_datetime("issue_date", data["issue_date"]) if data.get("issue_date") else None,
            due_date=coerce_datetime("due_date", data["due_date"]) if data.get("due_date") else None,
            currency=data.get("currency"),
            status=data.get("status") or "draft",
            paid_cents=coerce_int("paid_cents", data.get("paid_cents") or 0),
            notes=data.get("notes"),
            terms=data.get("terms"),
        )
        return {"invoice": invoice.to_dict()}, 201

    except ValidationError as e:
        return {"error": str(e), "details": e.details}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except DocumentSequenceError as e:
        return {"error": str(e), "details": e.details}, 409
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return {"error": "Internal server error"}, 500


@invoices_bp.get("")
@require_owner
def list_invoices_route():
    return invoice_service.list_invoices(
        owner_id=g.owner_id,
        status=request.args.get("status"),
        payment_status=request.args.get("payment_status"),
        customer_id=request.args.get("customer_id", type=int),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@invoices_bp.get("/<int:invoice_id>")
@require_owner
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(owner_id=g.owner_id, invoice_id=invoice_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"invoice": invoice.to_dict()}, 200


@invoices_bp.patch("/<int:invoice_id>")
@require_owner
def update_invoice_route(invoice_id: int):
    """
    Update an invoice. "lines" replaces every line; "status" accepts
    draft, sent or cancelled only.
    """
    data = _strip_derived(request.get_json(silent=True) or {})
    try:
        patch = dict(data)
        if "lines" in patch:
            patch["lines"] = validate_invoice_lines(patch["lines"])
        invoice = invoice_service.update_invoice(owner_id=g.owner_id, invoice_id=invoice_id, patch=patch)
        return {"invoice": invoice.to_dict()}, 200

    except ValidationError as e:
        return {"error": str(e), "details": e.details}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return {"error": "Internal server error"}, 500


@invoices_bp.post("/<int:invoice_id>/payments")
@require_owner
def record_payment_route(invoice_id: int):
    """Body: {"amount_cents": int > 0, "payment_method"?: str}"""
    data = request.get_json(silent=True) or {}
    try:
        if data.get("amount_cents") is None:
            raise ValidationError("amount_cents required")
        invoice = invoice_service.record_payment(
            owner_id=g.owner_id,
            invoice_id=invoice_id,
            amount_cents=coerce_int("amount_cents", data["amount_cents"]),
            payment_method=data.get("payment_method"),
        )
        return {"invoice": invoice.to_dict()}, 200

    except ValidationError as e:
        return {"error": str(e), "details": e.details}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to record invoice payment")
        return {"error": "Internal server error"}, 500


@invoices_bp.post("/refresh-overdue")
@require_owner
def refresh_overdue_route():
    """Mark the caller's unpaid invoices past their due date as overdue."""
    changed = invoice_service.refresh_overdue(owner_id=g.owner_id)
    return {"updated": changed}, 200
