# Overview: Service-layer operations for admin bulk chapter edits, pricing statistics and listings.

"""
Bulk Chapter Service

WHY: Admins flip pricing on hundreds of chapters at once. Writes go out in
chunked UPDATE statements (each chunk committed on its own, retried on lock
conflicts); afterwards the has_paid_chapters flag is repaired for exactly
the stories whose chapters changed is_paid.

RULES:
- Target: story_id and/or chapter_ids (AND-combined); at least one required
- Fields: fixed whitelist, unknown keys dropped silently
- Zero matched chapters is an error, not a no-op
- Paid chapters cannot be written into whole-story paid stories
- Repair failure is logged; the bulk write still succeeds
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import case, func, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import EntitlementError, NotFoundError, ValidationError
from ..models import Story, Chapter
from ..validation import coerce_bool, coerce_int, coerce_price
from .business_rules import validate_stories_accept_paid_chapters
from .concurrency import chunked, run_with_retry
from . import paid_chapters_service

logger = logging.getLogger(__name__)

BULK_BOOL_FIELDS = ("is_paid", "status", "show_ads", "is_new")
BULK_WRITABLE_FIELDS = BULK_BOOL_FIELDS + ("price",)

DEFAULT_PER_PAGE = 50
MAX_PER_PAGE = 200


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_fields(fields) -> dict:
    if not isinstance(fields, dict):
        raise ValidationError("invalid_payload", "fields must be an object")

    updates = {}
    for key, value in fields.items():
        if key not in BULK_WRITABLE_FIELDS:
            logger.debug("Bulk update dropping unknown field %r", key)
            continue
        if key == "price":
            updates[key] = coerce_price(value)
        else:
            updates[key] = coerce_bool(key, value)

    if not updates:
        raise ValidationError(
            "no_update_fields",
            f"No updatable fields supplied; allowed: {', '.join(BULK_WRITABLE_FIELDS)}",
        )

    if updates.get("is_paid") is True and "price" in updates and updates["price"] <= 0:
        raise ValidationError("invalid_price", "Paid chapters must have price > 0")
    if updates.get("is_paid") is False:
        updates.setdefault("price", 0)
    return updates


def _normalize_chapter_ids(chapter_ids) -> list[int]:
    if not isinstance(chapter_ids, (list, tuple)):
        raise ValidationError("invalid_payload", "chapter_ids must be a list")
    limit = int(current_app.config.get("BULK_MAX_CHAPTER_IDS", 5000))
    if len(chapter_ids) > limit:
        raise ValidationError("invalid_payload", f"At most {limit} chapter_ids per request")
    return list(dict.fromkeys(coerce_int("chapter_ids", cid) for cid in chapter_ids))


def _target_query(story_id, chapter_ids):
    if story_id is None and chapter_ids is None:
        raise ValidationError("missing_target", "Provide story_id and/or chapter_ids")

    query = db.session.query(
        Chapter.id,
        Chapter.story_id,
        Chapter.is_paid,
        Chapter.price,
        Chapter.status,
        Chapter.show_ads,
        Chapter.is_new,
    )
    if story_id is not None:
        story_id = coerce_int("story_id", story_id)
        if db.session.get(Story, story_id) is None:
            raise NotFoundError("story_not_found", f"Story {story_id} not found")
        query = query.filter(Chapter.story_id == story_id)
    if chapter_ids is not None:
        query = query.filter(Chapter.id.in_(_normalize_chapter_ids(chapter_ids)))
    return query.order_by(Chapter.id)


# =============================================================================
# BULK UPDATE
# =============================================================================

def _write_chunk(chapter_ids: list[int], updates: dict) -> None:
    def _op():
        db.session.execute(
            update(Chapter)
            .where(Chapter.id.in_(chapter_ids))
            .values(**updates)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

    run_with_retry(_op)


def _repair_after_bulk(story_ids: list[int]) -> list[dict]:
    if not story_ids:
        return []
    try:
        results = paid_chapters_service.repair_batch(story_ids)
    except (SQLAlchemyError, EntitlementError):
        db.session.rollback()
        logger.exception("has_paid_chapters repair failed after bulk update of stories %s", story_ids)
        return []
    for result in results:
        if not result.ok:
            logger.error("has_paid_chapters repair failed for story %s: %s", result.story_id, result.error)
    return [r.to_dict() for r in results]


def bulk_update_chapters(story_id=None, chapter_ids=None, fields=None) -> dict:
    """
    Apply ``fields`` to every chapter matched by the target.

    Returns {matched, modified, repaired_story_ids, repair}. modified counts
    chapters whose stored values actually changed.
    """
    updates = _normalize_fields(fields if fields is not None else {})
    try:
        rows = _target_query(story_id, chapter_ids).all()
    except EntitlementError:
        db.session.rollback()
        raise

    if not rows:
        raise ValidationError("no_matching_chapters", "No chapters matched the given target")

    if updates.get("is_paid") is True:
        validate_stories_accept_paid_chapters(sorted({row.story_id for row in rows}))
        if "price" not in updates:
            unpriced = [row.id for row in rows if row.price <= 0]
            if unpriced:
                raise ValidationError(
                    "invalid_price",
                    "Paid chapters must have price > 0; supply a price",
                    details={"chapter_ids": unpriced[:50]},
                )

    elif "is_paid" not in updates and updates.get("price", 1) <= 0:
        zeroed = [row.id for row in rows if row.is_paid]
        if zeroed:
            raise ValidationError(
                "invalid_price",
                "Paid chapters must have price > 0",
                details={"chapter_ids": zeroed[:50]},
            )

    changed = [row for row in rows if any(getattr(row, key) != value for key, value in updates.items())]
    flipped_story_ids = sorted({
        row.story_id for row in changed
        if "is_paid" in updates and row.is_paid != updates["is_paid"]
    })

    chunk_size = int(current_app.config.get("BULK_WRITE_CHUNK_SIZE", 500))
    for chunk in chunked([row.id for row in changed], chunk_size):
        _write_chunk(chunk, updates)

    logger.info(
        "Bulk chapter update: matched=%d modified=%d fields=%s",
        len(rows), len(changed), sorted(updates),
    )

    repair = _repair_after_bulk(flipped_story_ids)
    return {
        "matched": len(rows),
        "modified": len(changed),
        "repaired_story_ids": flipped_story_ids,
        "repair": repair,
    }


def convert_chapters_to_paid(price, story_id=None, chapter_ids=None) -> dict:
    price = coerce_price(price)
    if price <= 0:
        raise ValidationError("invalid_price", "Paid chapters must have price > 0")
    return bulk_update_chapters(story_id=story_id, chapter_ids=chapter_ids, fields={"is_paid": True, "price": price})


def convert_chapters_to_free(story_id=None, chapter_ids=None) -> dict:
    return bulk_update_chapters(story_id=story_id, chapter_ids=chapter_ids, fields={"is_paid": False, "price": 0})


# =============================================================================
# STATISTICS & LISTINGS (READ-ONLY)
# =============================================================================

def _get_story(story_id: int) -> Story:
    story = db.session.get(Story, story_id)
    if story is None:
        raise NotFoundError("story_not_found", f"Story {story_id} not found")
    return story


def get_chapter_stats(story_id: int) -> dict:
    story = _get_story(story_id)
    paid_price = case((Chapter.is_paid.is_(True), Chapter.price))

    row = db.session.query(
        func.count(Chapter.id).label("total"),
        func.coalesce(func.sum(case((Chapter.is_paid.is_(True), 1), else_=0)), 0).label("paid"),
        func.coalesce(func.sum(paid_price), 0).label("total_price"),
        func.avg(paid_price).label("avg_price"),
        func.min(paid_price).label("min_price"),
        func.max(paid_price).label("max_price"),
    ).filter(Chapter.story_id == story.id).one()

    return {
        "story_id": story.id,
        "story_name": story.name,
        "purchase_model": story.purchase_model.value,
        "total_chapters": row.total,
        "paid_chapters": row.paid,
        "free_chapters": row.total - row.paid,
        "total_paid_price": row.total_price,
        "avg_paid_price": round(float(row.avg_price), 2) if row.avg_price is not None else 0,
        "min_paid_price": row.min_price or 0,
        "max_paid_price": row.max_price or 0,
    }


def get_chapters_with_pricing(story_id: int, is_paid: bool | None = None, page: int = 1, per_page: int = DEFAULT_PER_PAGE) -> dict:
    story = _get_story(story_id)
    page = max(page, 1)
    per_page = min(max(per_page, 1), MAX_PER_PAGE)

    query = db.session.query(Chapter).filter(Chapter.story_id == story.id)
    if is_paid is not None:
        query = query.filter(Chapter.is_paid.is_(is_paid))

    total = query.count()
    chapters = query.order_by(Chapter.number).offset((page - 1) * per_page).limit(per_page).all()

    return {
        "story": {
            "id": story.id,
            "name": story.name,
            "is_paid": story.is_paid,
            "price": story.price,
            "has_paid_chapters": story.has_paid_chapters,
        },
        "chapters": [
            {"id": c.id, "number": c.number, "name": c.name, "is_paid": c.is_paid, "price": c.price, "status": c.status}
            for c in chapters
        ],
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": (total + per_page - 1) // per_page,
        },
    }
