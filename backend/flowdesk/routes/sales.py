# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/flowdesk/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, g, current_app

from ..services import sales_service
from ..services.sales_service import SaleError, InsufficientStockError
from ..services.document_service import DocumentSequenceError
from ..validation import ValidationError, NotFoundError, validate_sale_lines, coerce_int, coerce_datetime
from ..decorators import require_owner


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_owner
def create_sale_route():
    """
    Record a sale: numbers it, decrements stock and updates the customer.

    Body: lines[{product_id, quantity, unit_price_cents?, discount_cents?}],
    payment_method, customer_id?, customer_name?, payment_status?, channel?,
    currency?, notes?

    409 with details.items when any product lacks stock; nothing is written.
    """
    data = request.get_json(silent=True) or {}
    try:
        if not data.get("payment_method"):
            raise ValidationError("payment_method required")
        customer_id = data.get("customer_id")
        sale = sales_service.create_sale(
            owner_id=g.owner_id,
            lines=validate_sale_lines(data.get("lines")),
            payment_method=data["payment_method"],
            customer_id=coerce_int("customer_id", customer_id) if customer_id is not None else None,
            customer_name=data.get("customer_name"),
            payment_status=data.get("payment_status") or "paid",
            channel=data.get("channel") or "in-store",
            currency=data.get("currency"),
            notes=data.get("notes"),
        )
        return {"sale": sale.to_dict()}, 201

    except InsufficientStockError as e:
        return {"error": str(e), "details": e.details}, 409
    except ValidationError as e:
        return {"error": str(e), "details": e.details}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except DocumentSequenceError as e:
        return {"error": str(e), "details": e.details}, 409
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return {"error": "Internal server error"}, 500


@sales_bp.get("")
@require_owner
def list_sales_route():
    """
    Query params: customer_id, start, end (ISO-8601), page, per_page
    """
    try:
        start = coerce_datetime("start", request.args["start"]) if request.args.get("start") else None
        end = coerce_datetime("end", request.args["end"]) if request.args.get("end") else None
    except ValidationError as e:
        return {"error": str(e)}, 400

    return sales_service.list_sales(
        owner_id=g.owner_id,
        customer_id=request.args.get("customer_id", type=int),
        start=start,
        end=end,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@sales_bp.get("/<int:sale_id>")
@require_owner
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(owner_id=g.owner_id, sale_id=sale_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"sale": sale.to_dict()}, 200


@sales_bp.post("/<int:sale_id>/refund")
@require_owner
def refund_sale_route(sale_id: int):
    """Body: {"amount_cents": int > 0, "reason": str}"""
    data = request.get_json(silent=True) or {}
    try:
        if data.get("amount_cents") is None:
            raise ValidationError("amount_cents required")
        sale = sales_service.refund_sale(
            owner_id=g.owner_id,
            sale_id=sale_id,
            amount_cents=coerce_int("amount_cents", data["amount_cents"]),
            reason=data.get("reason") or "",
        )
        return {"sale": sale.to_dict()}, 200

    except ValidationError as e:
        return {"error": str(e)}, 400
    except SaleError as e:
        return {"error": str(e), "details": e.details}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return {"error": "Internal server error"}, 500
