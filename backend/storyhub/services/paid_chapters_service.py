# Overview: Service-layer operations for the has_paid_chapters flag; computes and repairs it.

"""
Paid Chapters Consistency Service

WHY: stories.has_paid_chapters is a materialized view of "some chapter of
this story is paid". Chapter writes are far more frequent than reads of
the flag, so it is NOT updated in the chapter's transaction. Instead every
mutation path calls repair_story/repair_batch after committing, and
recalculate_all is the backstop sweep.

INVARIANTS:
- Calculation is a pure read of current chapter state
- Writes happen only when the stored value differs
- Last write wins: every write comes from a real snapshot
- A failure repairing one story never aborts its siblings
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import exists, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import EntitlementError, NotFoundError
from ..models import Story, Chapter
from .concurrency import chunked, run_with_retry

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


@dataclass(frozen=True)
class RepairResult:
    story_id: int
    updated: bool
    value: bool | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        payload = {"story_id": self.story_id, "updated": self.updated, "value": self.value}
        if self.error:
            payload["error"] = self.error
        return payload


# =============================================================================
# CALCULATION (NO SIDE EFFECTS)
# =============================================================================

def _paid_chapter_exists(story_id):
    return exists().where(Chapter.story_id == story_id, Chapter.is_paid.is_(True))


def calculate_has_paid_chapters(story_id: int) -> bool:
    """
    True iff at least one chapter of story_id is paid.

    EXISTS stops at the first matching row instead of counting.
    """
    return bool(db.session.execute(select(_paid_chapter_exists(story_id))).scalar())


def calculate_batch_has_paid_chapters(story_ids: list[int]) -> dict[int, bool]:
    """
    Compute the flag for many stories with one grouped query.

    Returns {story_id: has_paid_chapters}; ids without paid chapters map
    to False.
    """
    results = {story_id: False for story_id in story_ids}
    if not story_ids:
        return results

    rows = db.session.execute(
        select(Chapter.story_id)
        .where(Chapter.story_id.in_(story_ids), Chapter.is_paid.is_(True))
        .group_by(Chapter.story_id)
    ).scalars()
    for story_id in rows:
        results[story_id] = True
    return results


# =============================================================================
# REPAIR
# =============================================================================

def _write_flag(story_id: int, value: bool) -> None:
    # Bumps version_id so a concurrent story mode edit fails its optimistic check
    db.session.execute(
        update(Story)
        .where(Story.id == story_id)
        .values(has_paid_chapters=value, version_id=Story.version_id + 1)
        .execution_options(synchronize_session=False)
    )


def _warn_on_mode_conflict(story_id: int, is_paid: bool, value: bool) -> None:
    if is_paid and value:
        logger.error(
            "Story %s is sold as a whole but has paid chapters; make its chapters free or switch it to Model B",
            story_id,
        )


def repair_story(story_id: int) -> RepairResult:
    """
    Recompute has_paid_chapters for one story and persist it if it changed.

    Idempotent: a second call with no chapter change in between returns
    updated=False.
    """
    def _op():
        stored = db.session.execute(
            select(Story.has_paid_chapters, Story.is_paid).where(Story.id == story_id)
        ).first()
        if stored is None:
            raise NotFoundError("story_not_found", f"Story {story_id} not found")

        value = calculate_has_paid_chapters(story_id)
        if stored.has_paid_chapters == value:
            logger.debug("Story %s has_paid_chapters already %s", story_id, value)
            return RepairResult(story_id=story_id, updated=False, value=value)

        _write_flag(story_id, value)
        db.session.commit()
        _warn_on_mode_conflict(story_id, stored.is_paid, value)
        logger.info("Story %s has_paid_chapters %s -> %s", story_id, stored.has_paid_chapters, value)
        return RepairResult(story_id=story_id, updated=True, value=value)

    return run_with_retry(_op)


def safe_repair_story(story_id: int) -> RepairResult | None:
    """
    Repair triggered after a chapter write.

    The chapter write is already committed; a repair failure is logged and
    left for the next sweep instead of failing the caller.
    """
    try:
        return repair_story(story_id)
    except (SQLAlchemyError, EntitlementError):
        db.session.rollback()
        logger.exception("Failed to repair has_paid_chapters for story %s", story_id)
        return None


def _dedupe(story_ids) -> list[int]:
    return list(dict.fromkeys(int(story_id) for story_id in story_ids))


def repair_batch(story_ids, batch_size: int | None = None) -> list[RepairResult]:
    """
    Repair many stories.

    One grouped query computes the flag for the whole (deduplicated) input;
    writes go out in chunks of batch_size per round-trip. If a chunk fails,
    its stories are retried one by one so each reports its own outcome.
    """
    unique_ids = _dedupe(story_ids)
    if not unique_ids:
        return []
    if batch_size is None:
        batch_size = int(current_app.config.get("REPAIR_BATCH_SIZE", DEFAULT_BATCH_SIZE))

    computed = calculate_batch_has_paid_chapters(unique_ids)
    stored = {
        row.id: row
        for row in db.session.execute(
            select(Story.id, Story.has_paid_chapters, Story.is_paid).where(Story.id.in_(unique_ids))
        )
    }

    results: list[RepairResult] = []
    for number, chunk in enumerate(chunked(unique_ids, batch_size), start=1):
        pending: list[int] = []
        for story_id in chunk:
            row = stored.get(story_id)
            if row is None:
                results.append(RepairResult(story_id=story_id, updated=False, value=None, error="story_not_found"))
            elif row.has_paid_chapters == computed[story_id]:
                results.append(RepairResult(story_id=story_id, updated=False, value=computed[story_id]))
            else:
                pending.append(story_id)

        if not pending:
            continue

        logger.debug("Repair batch %d: writing %d stories", number, len(pending))
        try:
            for story_id in pending:
                _write_flag(story_id, computed[story_id])
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Repair batch %d failed; retrying its stories individually", number)
            results.extend(_repair_individually(pending, computed))
            continue

        for story_id in pending:
            _warn_on_mode_conflict(story_id, stored[story_id].is_paid, computed[story_id])
            results.append(RepairResult(story_id=story_id, updated=True, value=computed[story_id]))

    updated = sum(1 for r in results if r.updated)
    logger.info("Repaired has_paid_chapters for %d stories (%d updated)", len(unique_ids), updated)
    return results


def _repair_individually(story_ids: list[int], computed: dict[int, bool]) -> list[RepairResult]:
    results = []
    for story_id in story_ids:
        try:
            _write_flag(story_id, computed[story_id])
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Failed to repair has_paid_chapters for story %s", story_id)
            results.append(RepairResult(story_id=story_id, updated=False, value=None, error=exc.__class__.__name__))
            continue
        results.append(RepairResult(story_id=story_id, updated=True, value=computed[story_id]))
    return results


# =============================================================================
# RECONCILIATION SWEEP
# =============================================================================

def recalculate_all() -> dict:
    """
    Repair every story. Used for migration/backfill and drift correction,
    not on the request path.
    """
    story_ids = db.session.execute(select(Story.id).order_by(Story.id)).scalars().all()
    logger.info("Recalculating has_paid_chapters for %d stories", len(story_ids))

    updated = 0
    errors = []
    for story_id in story_ids:
        try:
            result = repair_story(story_id)
        except (SQLAlchemyError, EntitlementError) as exc:
            db.session.rollback()
            logger.exception("Failed to recalculate story %s", story_id)
            errors.append({"story_id": story_id, "error": str(exc)})
            continue
        if result.updated:
            updated += 1

    logger.info("Recalculation complete: %d/%d stories updated", updated, len(story_ids))
    return {
        "total_stories": len(story_ids),
        "updated_stories": updated,
        "errors": errors,
    }


def find_inconsistent_stories() -> list[dict]:
    """Stories whose stored flag differs from the computed one (read-only)."""
    computed = _paid_chapter_exists(Story.id).correlate(Story).label("computed")
    rows = db.session.execute(
        select(Story.id, Story.name, Story.has_paid_chapters, Story.is_paid, computed).order_by(Story.id)
    )
    return [
        {
            "story_id": row.id,
            "story_name": row.name,
            "current_value": row.has_paid_chapters,
            "calculated_value": bool(row.computed),
            "is_paid": row.is_paid,
        }
        for row in rows
        if bool(row.computed) != row.has_paid_chapters
    ]
