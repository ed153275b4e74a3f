# Overview: Service-layer operations for stories; creation, pricing/model edits and model inspection.

from __future__ import annotations

import logging

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, EntitlementError, NotFoundError, ValidationError
from ..models import Story, Chapter, PurchaseModel
from ..validation import STORY_POLICY, STORY_PRICING_POLICY, validate_payload
from .business_rules import StoryDraft, validate_story
from .concurrency import lock_for_update, run_with_retry
from .paid_chapters_service import calculate_has_paid_chapters

logger = logging.getLogger(__name__)


def get_story(story_id: int) -> Story:
    story = db.session.get(Story, story_id)
    if story is None:
        raise NotFoundError("story_not_found", f"Story {story_id} not found")
    return story


def create_story(payload: dict) -> Story:
    """Create a story. New stories have no chapters, so they are Model A or FREE."""
    patch = validate_payload(model=Story, payload=payload, policy=STORY_POLICY, partial=False)
    patch.setdefault("is_paid", False)
    patch.setdefault("price", 0)

    validate_story(StoryDraft(is_paid=patch["is_paid"], has_paid_chapters=False, price=patch["price"]))

    story = Story(has_paid_chapters=False, chapter_count=0, **patch)
    db.session.add(story)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("slug_taken", f"Slug {patch['slug']!r} is already in use", details={"slug": patch["slug"]})

    logger.info("Created story %s (%s)", story.id, story.purchase_model.value)
    return story


def update_story_pricing(story_id: int, payload: dict) -> Story:
    """
    Change a story's is_paid/price.

    Holds the exclusive row lock and the optimistic version check. A repair
    that lands between our read and our write bumps version_id, the flush
    raises StaleDataError and the edit is re-validated from fresh state.
    """
    patch = validate_payload(model=Story, payload=payload, policy=STORY_PRICING_POLICY, partial=True)
    if not patch:
        raise ValidationError("no_update_fields", "Supply is_paid and/or price")

    def _op():
        story = lock_for_update(db.session.query(Story).filter_by(id=story_id)).first()
        if story is None:
            raise NotFoundError("story_not_found", f"Story {story_id} not found")

        new_is_paid = patch.get("is_paid", story.is_paid)
        if "is_paid" in patch and not new_is_paid and "price" not in patch:
            new_price = 0
        else:
            new_price = patch.get("price", story.price)

        # Stored flag may lag a just-committed paid chapter; ask the chapters directly
        has_paid_chapters = story.has_paid_chapters
        if new_is_paid and not has_paid_chapters:
            has_paid_chapters = calculate_has_paid_chapters(story.id)

        previous = story.purchase_model
        model = validate_story(StoryDraft(is_paid=new_is_paid, has_paid_chapters=has_paid_chapters, price=new_price))

        story.is_paid = new_is_paid
        story.price = new_price
        db.session.flush()
        db.session.commit()

        if model is not previous:
            logger.info("Story %s purchase model %s -> %s", story.id, previous.value, model.value)
        return story

    try:
        return run_with_retry(_op)
    except EntitlementError:
        db.session.rollback()
        raise


def get_story_model(story_id: int) -> dict:
    """Purchase model of a story with the chapter counts behind it."""
    story = get_story(story_id)
    total, paid = db.session.query(
        func.count(Chapter.id),
        func.coalesce(func.sum(case((Chapter.is_paid.is_(True), 1), else_=0)), 0),
    ).filter(Chapter.story_id == story.id).one()

    model = story.purchase_model
    if model is PurchaseModel.MODEL_A:
        purchasable = ["story"]
    elif model is PurchaseModel.MODEL_B:
        purchasable = ["chapter"]
    else:
        purchasable = []

    return {
        "story_id": story.id,
        "name": story.name,
        "model": model.value,
        "is_paid": story.is_paid,
        "has_paid_chapters": story.has_paid_chapters,
        "price": story.price,
        "total_chapters": total,
        "paid_chapters": paid,
        "purchasable": purchasable,
    }
