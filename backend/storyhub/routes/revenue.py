# Overview: Flask API routes for revenue reporting; returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..errors import EntitlementError, error_response, internal_error_response
from ..services import revenue_service
from ..decorators import require_admin
from ..validation import coerce_int


revenue_bp = Blueprint("revenue", __name__, url_prefix="/api/admin/revenue")


@revenue_bp.get("/stories")
@require_admin
def story_revenue_route():
    try:
        story_id = request.args.get("story_id")
        rows = revenue_service.get_story_revenue(
            coerce_int("story_id", story_id) if story_id not in (None, "") else None
        )
        return jsonify({
            "stories": rows,
            "total_revenue": sum(row["total_revenue"] for row in rows),
        }), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute story revenue")
        return internal_error_response()
