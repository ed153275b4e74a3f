# Overview: Flask API routes for admin story management and flag repair; parses input and returns JSON responses.

"""Admin story routes: creation, purchase model edits, has_paid_chapters repair"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import EntitlementError, ValidationError, error_response, internal_error_response
from ..services import paid_chapters_service, story_service
from ..services.business_rules import StoryDraft, validate_with_suggestions
from ..decorators import require_admin
from ..validation import coerce_bool, coerce_price


stories_bp = Blueprint("stories", __name__, url_prefix="/api/admin/stories")


@stories_bp.post("/")
@require_admin
def create_story_route():
    try:
        story = story_service.create_story(request.get_json(silent=True))
        return jsonify({"story": story.to_dict()}), 201

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create story")
        return internal_error_response()


@stories_bp.patch("/<int:story_id>/pricing")
@require_admin
def update_pricing_route(story_id: int):
    try:
        story = story_service.update_story_pricing(story_id, request.get_json(silent=True))
        return jsonify({"story": story.to_dict()}), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update pricing of story %s", story_id)
        return internal_error_response()


@stories_bp.get("/<int:story_id>/model")
@require_admin
def story_model_route(story_id: int):
    try:
        return jsonify(story_service.get_story_model(story_id)), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to read purchase model of story %s", story_id)
        return internal_error_response()


@stories_bp.get("/validate")
@require_admin
def validate_draft_route():
    """
    Dry-run the story rules against query params.

    ?is_paid=true&has_paid_chapters=false&price=100
    """
    try:
        args = request.args
        price = args.get("price")
        draft = StoryDraft(
            is_paid=coerce_bool("is_paid", args.get("is_paid", "false")),
            has_paid_chapters=coerce_bool("has_paid_chapters", args.get("has_paid_chapters", "false")),
            price=coerce_price(price) if price not in (None, "") else None,
        )
        return jsonify(validate_with_suggestions(draft).to_dict()), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate story draft")
        return internal_error_response()


# =============================================================================
# HAS_PAID_CHAPTERS REPAIR
# =============================================================================

@stories_bp.post("/<int:story_id>/repair")
@require_admin
def repair_story_route(story_id: int):
    try:
        result = paid_chapters_service.repair_story(story_id)
        return jsonify(result.to_dict()), 200

    except EntitlementError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to repair story %s", story_id)
        return internal_error_response()


@stories_bp.post("/repair-batch")
@require_admin
def repair_batch_route():
    try:
        data = request.get_json(silent=True) or {}
        story_ids = data.get("story_ids")
        if not isinstance(story_ids, list) or not story_ids:
            raise ValidationError("invalid_payload", "story_ids must be a non-empty list")

        results = paid_chapters_service.repair_batch(story_ids)
        return jsonify({
            "results": [r.to_dict() for r in results],
            "updated": sum(1 for r in results if r.updated),
            "failed": sum(1 for r in results if not r.ok),
        }), 200

    except EntitlementError as e:
        return error_response(e)
    except (TypeError, ValueError):
        return error_response(ValidationError("invalid_payload", "story_ids must be integers"))
    except Exception:
        current_app.logger.exception("Batch repair failed")
        return internal_error_response()


@stories_bp.get("/inconsistencies")
@require_admin
def inconsistencies_route():
    try:
        stories = paid_chapters_service.find_inconsistent_stories()
        return jsonify({"stories": stories, "count": len(stories)}), 200

    except Exception:
        current_app.logger.exception("Failed to scan for inconsistent stories")
        return internal_error_response()
