# Overview: Service-layer operations for chapters; create, update, delete and move with flag repair.

"""
Chapter Service

Every chapter write commits first and then triggers the has_paid_chapters
repair for the affected stories:
- create: only when the new chapter is paid
- update: only when is_paid actually changed
- delete: only when the deleted chapter was paid
- move:   always, for both the source and the destination story

Repair failures are logged and never undo the chapter write.

Paid-chapter writes hold a shared lock on the owning story until commit so
they cannot interleave with a story switching to whole-story mode.
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, EntitlementError, NotFoundError, ValidationError
from ..models import Story, Chapter
from ..validation import CHAPTER_POLICY, enforce_rules_chapter, validate_payload
from .business_rules import validate_chapter_pricing
from .concurrency import lock_for_update
from . import paid_chapters_service

logger = logging.getLogger(__name__)


def _get_chapter(chapter_id: int, *, lock: bool = False) -> Chapter:
    query = db.session.query(Chapter).filter_by(id=chapter_id)
    if lock:
        query = lock_for_update(query)
    chapter = query.first()
    if not chapter:
        raise NotFoundError("chapter_not_found", f"Chapter {chapter_id} not found")
    return chapter


def _number_taken(story_id: int, number: int, exclude_id: int | None = None) -> bool:
    query = db.session.query(Chapter.id).filter(Chapter.story_id == story_id, Chapter.number == number)
    if exclude_id is not None:
        query = query.filter(Chapter.id != exclude_id)
    return query.first() is not None


def _number_conflict(story_id: int, number: int) -> ConflictError:
    return ConflictError(
        "chapter_number_taken",
        f"Story {story_id} already has a chapter number {number}",
        details={"story_id": story_id, "number": number},
    )


def _bump_chapter_count(story_id: int, delta: int) -> None:
    # Plain counter; does not touch version_id so it never races story mode edits
    db.session.execute(
        update(Story)
        .where(Story.id == story_id)
        .values(chapter_count=Story.chapter_count + delta)
        .execution_options(synchronize_session=False)
    )


def _commit_chapter_write(story_id: int, number: int | None) -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise _number_conflict(story_id, number)


# =============================================================================
# CREATE / UPDATE / DELETE
# =============================================================================

def create_chapter(story_id: int, payload: dict) -> Chapter:
    patch = validate_payload(model=Chapter, payload=payload, policy=CHAPTER_POLICY, partial=False)
    patch.setdefault("is_paid", False)
    if patch["is_paid"]:
        if "price" not in patch:
            raise ValidationError("invalid_price", "Paid chapters must have price > 0")
    else:
        patch.setdefault("price", 0)
    enforce_rules_chapter(patch)

    try:
        validate_chapter_pricing(story_id, patch, lock=patch["is_paid"])

        if _number_taken(story_id, patch["number"]):
            raise _number_conflict(story_id, patch["number"])

        chapter = Chapter(story_id=story_id, **patch)
        db.session.add(chapter)
        _bump_chapter_count(story_id, 1)
        db.session.flush()
    except EntitlementError:
        db.session.rollback()
        raise

    _commit_chapter_write(story_id, patch["number"])
    logger.info("Created chapter %s (number %s) in story %s, paid=%s", chapter.id, chapter.number, story_id, chapter.is_paid)

    if chapter.is_paid:
        paid_chapters_service.safe_repair_story(story_id)
    return chapter


def update_chapter(chapter_id: int, payload: dict) -> Chapter:
    patch = validate_payload(model=Chapter, payload=payload, policy=CHAPTER_POLICY, partial=True)
    if not patch:
        raise ValidationError("no_update_fields", "No updatable fields supplied")

    try:
        chapter = _get_chapter(chapter_id, lock=True)
        was_paid = chapter.is_paid

        new_is_paid = patch.get("is_paid", chapter.is_paid)
        if "is_paid" in patch and not new_is_paid and "price" not in patch:
            patch["price"] = 0
        new_price = patch.get("price", chapter.price)
        merged = {"is_paid": new_is_paid, "price": new_price}
        if "number" in patch:
            merged["number"] = patch["number"]
        enforce_rules_chapter(merged)

        if new_is_paid:
            validate_chapter_pricing(chapter.story_id, {"is_paid": True, "price": new_price}, lock=True)

        if "number" in patch and _number_taken(chapter.story_id, patch["number"], exclude_id=chapter.id):
            raise _number_conflict(chapter.story_id, patch["number"])

        for key, value in patch.items():
            setattr(chapter, key, value)
        db.session.flush()
    except EntitlementError:
        db.session.rollback()
        raise

    story_id = chapter.story_id
    _commit_chapter_write(story_id, patch.get("number"))

    if was_paid != new_is_paid:
        logger.info("Chapter %s is_paid %s -> %s", chapter_id, was_paid, new_is_paid)
        paid_chapters_service.safe_repair_story(story_id)
    return chapter


def delete_chapter(chapter_id: int) -> dict:
    try:
        chapter = _get_chapter(chapter_id, lock=True)
    except EntitlementError:
        db.session.rollback()
        raise

    story_id = chapter.story_id
    was_paid = chapter.is_paid

    db.session.delete(chapter)
    _bump_chapter_count(story_id, -1)
    db.session.commit()
    logger.info("Deleted chapter %s from story %s (paid=%s)", chapter_id, story_id, was_paid)

    # A free chapter cannot have been the reason for the flag
    repair = paid_chapters_service.safe_repair_story(story_id) if was_paid else None
    return {
        "deleted": chapter_id,
        "story_id": story_id,
        "repair": repair.to_dict() if repair else None,
    }


# =============================================================================
# MOVE
# =============================================================================

def move_chapter(chapter_id: int, target_story_id: int, number: int | None = None) -> dict:
    """
    Reassign a chapter to another story, optionally renumbering it.

    The chapter must be acceptable in the destination story (a paid chapter
    cannot move into a whole-story paid story).
    """
    try:
        chapter = _get_chapter(chapter_id, lock=True)
        source_story_id = chapter.story_id
        new_number = chapter.number if number is None else number

        # Loads (and for paid chapters locks) the destination; raises story_not_found
        validate_chapter_pricing(
            target_story_id,
            {"is_paid": chapter.is_paid, "price": chapter.price},
            lock=chapter.is_paid,
        )

        if _number_taken(target_story_id, new_number, exclude_id=chapter.id):
            raise _number_conflict(target_story_id, new_number)

        chapter.story_id = target_story_id
        chapter.number = new_number
        if source_story_id != target_story_id:
            _bump_chapter_count(source_story_id, -1)
            _bump_chapter_count(target_story_id, 1)
        db.session.flush()
    except EntitlementError:
        db.session.rollback()
        raise

    _commit_chapter_write(target_story_id, new_number)
    logger.info("Moved chapter %s from story %s to story %s", chapter_id, source_story_id, target_story_id)

    repairs = []
    for story_id in dict.fromkeys((source_story_id, target_story_id)):
        result = paid_chapters_service.safe_repair_story(story_id)
        repairs.append(result.to_dict() if result else {"story_id": story_id, "error": "repair_failed"})

    return {"chapter": chapter.to_dict(), "from_story_id": source_story_id, "repairs": repairs}
