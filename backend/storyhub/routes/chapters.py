# Overview: Flask API routes for admin chapter management; parses input and returns JSON responses.

"""Admin chapter routes: single-chapter writes, bulk pricing edits, pricing stats"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import EntitlementError, ValidationError, error_response, internal_error_response
from ..services import bulk_chapter_service, chapter_service
from ..decorators import require_admin
from ..validation import coerce_bool, coerce_int


chapters_bp = Blueprint("chapters", __name__, url_prefix="/api/admin/chapters")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("invalid_payload", "Invalid JSON payload")
    return data


@chapters_bp.post("/")
@require_admin
def create_chapter_route():
    try:
        data = dict(_json_body())
        story_id = data.pop("story_id", None)
        if story_id is None:
            raise ValidationError("invalid_payload", "story_id required")

        chapter = chapter_service.create_chapter(coerce_int("story_id", story_id), data)
        return jsonify({"chapter": chapter.to_dict()}), 201

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create chapter")
        return internal_error_response()


@chapters_bp.patch("/<int:chapter_id>")
@require_admin
def update_chapter_route(chapter_id: int):
    try:
        chapter = chapter_service.update_chapter(chapter_id, _json_body())
        return jsonify({"chapter": chapter.to_dict()}), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update chapter %s", chapter_id)
        return internal_error_response()


@chapters_bp.delete("/<int:chapter_id>")
@require_admin
def delete_chapter_route(chapter_id: int):
    try:
        return jsonify(chapter_service.delete_chapter(chapter_id)), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete chapter %s", chapter_id)
        return internal_error_response()


@chapters_bp.post("/<int:chapter_id>/move")
@require_admin
def move_chapter_route(chapter_id: int):
    try:
        data = _json_body()
        target = data.get("story_id")
        if target is None:
            raise ValidationError("invalid_payload", "story_id required")
        number = data.get("number")

        result = chapter_service.move_chapter(
            chapter_id,
            coerce_int("story_id", target),
            number=coerce_int("number", number) if number is not None else None,
        )
        return jsonify(result), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to move chapter %s", chapter_id)
        return internal_error_response()


# =============================================================================
# BULK
# =============================================================================

@chapters_bp.post("/bulk-update")
@require_admin
def bulk_update_route():
    """
    Body: {story_id?, chapter_ids?, fields: {...}}

    Returns matched/modified counts plus the stories whose flag was repaired.
    """
    try:
        data = _json_body()
        result = bulk_chapter_service.bulk_update_chapters(
            story_id=data.get("story_id"),
            chapter_ids=data.get("chapter_ids"),
            fields=data.get("fields") or {},
        )
        return jsonify(result), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Bulk chapter update failed")
        return internal_error_response()


@chapters_bp.post("/convert-to-paid")
@require_admin
def convert_to_paid_route():
    try:
        data = _json_body()
        result = bulk_chapter_service.convert_chapters_to_paid(
            data.get("price"),
            story_id=data.get("story_id"),
            chapter_ids=data.get("chapter_ids"),
        )
        return jsonify(result), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Convert chapters to paid failed")
        return internal_error_response()


@chapters_bp.post("/convert-to-free")
@require_admin
def convert_to_free_route():
    try:
        data = _json_body()
        result = bulk_chapter_service.convert_chapters_to_free(
            story_id=data.get("story_id"),
            chapter_ids=data.get("chapter_ids"),
        )
        return jsonify(result), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Convert chapters to free failed")
        return internal_error_response()


# =============================================================================
# READ-ONLY
# =============================================================================

@chapters_bp.get("/stats/<int:story_id>")
@require_admin
def chapter_stats_route(story_id: int):
    try:
        return jsonify(bulk_chapter_service.get_chapter_stats(story_id)), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute chapter stats for story %s", story_id)
        return internal_error_response()


@chapters_bp.get("/pricing/<int:story_id>")
@require_admin
def chapter_pricing_route(story_id: int):
    try:
        is_paid = request.args.get("is_paid")
        result = bulk_chapter_service.get_chapters_with_pricing(
            story_id,
            is_paid=coerce_bool("is_paid", is_paid) if is_paid not in (None, "") else None,
            page=coerce_int("page", request.args.get("page", "1")),
            per_page=coerce_int("per_page", request.args.get("per_page", str(bulk_chapter_service.DEFAULT_PER_PAGE))),
        )
        return jsonify(result), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list chapter pricing for story %s", story_id)
        return internal_error_response()
