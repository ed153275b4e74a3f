# Overview: Purchase-model business rules for stories and chapters.

"""
Business Rule Validator

WHY: A story is sold either as a whole (Model A) or chapter by chapter
(Model B), never both. The two stored booleans allow the forbidden
combination, so every write touching them passes through here first.

RULES:
- I1: is_paid and has_paid_chapters are never both true
- I2: is_paid requires price > 0; a free story has price == 0
- I3: a whole-story paid story has no paid chapters

Rule checks reason about PurchaseModel, never about the raw flags.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..extensions import db
from ..errors import BusinessRuleViolation, ConflictError, NotFoundError, ValidationError
from ..models import Story, PurchaseModel
from ..models.purchases import PURCHASE_KIND_STORY, PURCHASE_KIND_CHAPTER
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


# =============================================================================
# VIOLATION CLASSIFICATIONS (CONSTANTS)
# =============================================================================

MUTUAL_EXCLUSION_VIOLATION = "MUTUAL_EXCLUSION_VIOLATION"
MODEL_A_VIOLATION = "MODEL_A_VIOLATION"
MODEL_B_VIOLATION = "MODEL_B_VIOLATION"
FREE_MODEL_VIOLATION = "FREE_MODEL_VIOLATION"
CHAPTER_PRICING_VIOLATION = "CHAPTER_PRICING_VIOLATION"

REMEDIATION_HINTS = {
    MUTUAL_EXCLUSION_VIOLATION: (
        "Choose one model: Model A (is_paid=true, has_paid_chapters=false) "
        "or Model B (is_paid=false, has_paid_chapters=true)"
    ),
    MODEL_A_VIOLATION: "Model A: set is_paid=true, price>0 and keep every chapter free",
    MODEL_B_VIOLATION: "Model B: set is_paid=false and price=0; sell chapters individually",
    FREE_MODEL_VIOLATION: "Free story: set price=0, or set is_paid=true to sell the whole story",
    CHAPTER_PRICING_VIOLATION: "Make the chapter free, or switch the story to Model B (is_paid=false, price=0)",
}


@dataclass(frozen=True)
class StoryDraft:
    """Monetization fields of a story write, after merging with stored state."""
    is_paid: bool
    has_paid_chapters: bool
    price: int | None

    @property
    def model(self) -> PurchaseModel:
        return PurchaseModel.of(self.is_paid, self.has_paid_chapters)

    @classmethod
    def from_mapping(cls, data: dict) -> "StoryDraft":
        return cls(
            is_paid=bool(data.get("is_paid", False)),
            has_paid_chapters=bool(data.get("has_paid_chapters", False)),
            price=data.get("price"),
        )


@dataclass
class ValidationReport:
    valid: bool
    model: PurchaseModel | None = None
    errors: list[dict] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "model": self.model.value if self.model else None,
            "errors": self.errors,
            "suggestions": self.suggestions,
        }


def _violation(code: str, message: str) -> BusinessRuleViolation:
    return BusinessRuleViolation(code, message, hint=REMEDIATION_HINTS[code])


# =============================================================================
# STORY RULES
# =============================================================================

def validate_story(draft: StoryDraft) -> PurchaseModel:
    """
    Accept or reject a story's monetization fields.

    Returns the resulting PurchaseModel; raises BusinessRuleViolation with
    the classification of the first rule broken.
    """
    price = draft.price
    if price is not None and price < 0:
        raise ValidationError("invalid_price", "price must be >= 0")

    # I1
    if draft.is_paid and draft.has_paid_chapters:
        raise _violation(
            MUTUAL_EXCLUSION_VIOLATION,
            "is_paid and has_paid_chapters cannot both be true: "
            "a story is sold either whole (Model A) or per chapter (Model B)",
        )

    model = draft.model

    if model is PurchaseModel.MODEL_A and (price is None or price <= 0):
        raise _violation(MODEL_A_VIOLATION, "Whole-story purchase requires price > 0")

    # MODEL_B already implies is_paid=false, so only the price can be wrong
    if model is PurchaseModel.MODEL_B and price:
        raise _violation(MODEL_B_VIOLATION, "Per-chapter purchase story cannot have price > 0")

    if model is PurchaseModel.FREE and price:
        raise _violation(FREE_MODEL_VIOLATION, "Free story cannot have price > 0")

    return model


def validate_with_suggestions(draft: StoryDraft) -> ValidationReport:
    """Non-raising variant of validate_story for admin tooling."""
    try:
        model = validate_story(draft)
    except BusinessRuleViolation as exc:
        return ValidationReport(valid=False, errors=[exc.to_dict()], suggestions=[exc.hint] if exc.hint else [])
    except ValidationError as exc:
        return ValidationReport(valid=False, errors=[exc.to_dict()])
    return ValidationReport(valid=True, model=model)


# =============================================================================
# CHAPTER RULES
# =============================================================================

def _load_story_modes(story_id: int, *, lock: bool) -> Story:
    query = db.session.query(Story).filter_by(id=story_id)
    if lock:
        query = lock_for_update(query, shared=True)
    story = query.first()
    if not story:
        raise NotFoundError("story_not_found", f"Story {story_id} not found")
    return story


def validate_chapter_pricing(story_id: int, chapter_draft: dict, *, lock: bool = False) -> PurchaseModel:
    """
    Check a chapter write against the owning story's purchase model.

    A paid chapter in a Model A story is rejected (I3). A paid chapter in a
    currently FREE story is accepted: the next repair pass promotes the
    story to Model B.

    lock=True holds a shared row lock on the story for the rest of the
    caller's transaction.
    """
    story = _load_story_modes(story_id, lock=lock)
    model = story.purchase_model

    if not chapter_draft.get("is_paid"):
        return model

    if model is PurchaseModel.MODEL_A:
        raise BusinessRuleViolation(
            CHAPTER_PRICING_VIOLATION,
            f'Story "{story.name}" is sold as a whole (Model A); its chapters cannot be paid',
            hint=REMEDIATION_HINTS[CHAPTER_PRICING_VIOLATION],
            details={"story_id": story.id},
        )

    price = chapter_draft.get("price")
    if price is not None and price <= 0:
        raise ValidationError("invalid_price", "Paid chapters must have price > 0")

    if model is PurchaseModel.FREE:
        logger.info("Story %s receives a paid chapter; it will move to per-chapter purchase (Model B)", story_id)

    return model


def validate_stories_accept_paid_chapters(story_ids: list[int]) -> None:
    """Bulk form of the I3 check: none of the stories may be Model A."""
    if not story_ids:
        return
    rows = (
        db.session.query(Story.id, Story.name)
        .filter(Story.id.in_(story_ids), Story.is_paid.is_(True))
        .order_by(Story.id)
        .all()
    )
    if rows:
        raise BusinessRuleViolation(
            CHAPTER_PRICING_VIOLATION,
            "Chapters of whole-story paid stories (Model A) cannot be paid",
            hint=REMEDIATION_HINTS[CHAPTER_PRICING_VIOLATION],
            details={"story_ids": [row.id for row in rows]},
        )


# =============================================================================
# PURCHASE COMPATIBILITY
# =============================================================================

def validate_purchase_compatibility(story: Story, kind: str) -> PurchaseModel:
    """
    Check that a purchase of ``kind`` fits the story's model.

    Chapter purchases are only refused for Model A stories: a FREE story
    whose flag has not caught up with a newly paid chapter is still sold
    per chapter, and the chapter's own is_paid decides.
    """
    if kind not in (PURCHASE_KIND_STORY, PURCHASE_KIND_CHAPTER):
        raise ValidationError("invalid_payload", f"Unknown purchase kind: {kind}")

    model = story.purchase_model

    if kind == PURCHASE_KIND_CHAPTER and model is PurchaseModel.MODEL_A:
        raise ConflictError(
            "incompatible_purchase_model",
            f'Story "{story.name}" is sold as a whole; buy the story instead of individual chapters',
            details={"story_id": story.id, "model": model.value},
        )

    if kind == PURCHASE_KIND_STORY and (model is not PurchaseModel.MODEL_A or not story.price or story.price <= 0):
        raise ConflictError(
            "not_for_sale",
            f'Story "{story.name}" is not sold as a whole',
            details={"story_id": story.id, "model": model.value},
        )

    return model
