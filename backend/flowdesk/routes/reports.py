# Overview: Flask API routes for owner reports.

from flask import Blueprint, request, g

from ..services import reporting_service
from ..validation import ValidationError, coerce_datetime
from ..decorators import require_owner

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/summary")
@require_owner
def summary_route():
    """Dashboard summary. Optional start/end (ISO-8601) bound the sales figures."""
    try:
        start = coerce_datetime("start", request.args["start"]) if request.args.get("start") else None
        end = coerce_datetime("end", request.args["end"]) if request.args.get("end") else None
    except ValidationError as e:
        return {"error": str(e)}, 400

    return reporting_service.dashboard_summary(owner_id=g.owner_id, start=start, end=end), 200
