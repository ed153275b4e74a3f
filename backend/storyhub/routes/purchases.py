# Overview: Flask API routes for purchases and access checks; parses input and returns JSON responses.

"""Purchase API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import EntitlementError, ValidationError, error_response, internal_error_response
from ..services import access_service, purchase_service
from ..decorators import optional_user, require_user
from ..time_utils import parse_iso_datetime
from ..validation import coerce_int


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchase")


def _request_args() -> dict:
    if request.method == "GET":
        return request.args.to_dict()
    return request.get_json(silent=True) or {}


def _required_int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None or value == "":
        raise ValidationError("invalid_payload", f"{key} required")
    return coerce_int(key, value)


def _optional_expiry(data: dict):
    raw = data.get("expires_at")
    if not raw:
        return None
    try:
        return parse_iso_datetime(str(raw))
    except ValueError:
        raise ValidationError("invalid_payload", "expires_at must be an ISO-8601 datetime")


@purchases_bp.route("/check-access", methods=["GET", "POST"])
@optional_user
def check_access_route():
    """
    Can the caller read this story/chapter?

    Anonymous callers are allowed; a paywalled target answers its purchase
    reason and price with authentication_required set.
    """
    try:
        data = _request_args()
        story_id = _required_int(data, "story_id")
        chapter_id = data.get("chapter_id")
        chapter_id = coerce_int("chapter_id", chapter_id) if chapter_id not in (None, "") else None

        decision = access_service.check_access(g.user_id, story_id, chapter_id)
        return jsonify({"access": decision.to_dict()}), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check access")
        return internal_error_response()


@purchases_bp.post("/story")
@require_user
def purchase_story_route():
    try:
        data = request.get_json(silent=True) or {}
        story_id = _required_int(data, "story_id")

        receipt = purchase_service.purchase_story(g.user_id, story_id, expires_at=_optional_expiry(data))
        return jsonify({"receipt": receipt}), 201

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to purchase story")
        return internal_error_response()


@purchases_bp.post("/chapter")
@require_user
def purchase_chapter_route():
    try:
        data = request.get_json(silent=True) or {}
        chapter_id = _required_int(data, "chapter_id")

        receipt = purchase_service.purchase_chapter(g.user_id, chapter_id, expires_at=_optional_expiry(data))
        return jsonify({"receipt": receipt}), 201

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to purchase chapter")
        return internal_error_response()


@purchases_bp.get("/my-purchases")
@require_user
def my_purchases_route():
    try:
        return jsonify(purchase_service.get_user_purchases(g.user_id)), 200
    except Exception:
        current_app.logger.exception("Failed to list purchases")
        return internal_error_response()
