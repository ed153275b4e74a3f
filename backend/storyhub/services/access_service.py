# Overview: Read-only access resolution for stories and chapters.

"""
Access Resolver

Decides whether a (possibly anonymous) user may read a story or one of its
chapters. Never writes: an entry whose expires_at has passed is treated as
not owned here, and expire_purchases() performs the status transition later.

Decision order:
1. story missing -> NotFoundError
2. whole-story mode: granted iff an active story purchase exists (chapter id ignored)
3. per-chapter/free mode without a chapter: free_content
4. chapter missing or in another story -> NotFoundError
5. free chapter: free_content
6. paid chapter: granted iff an active story purchase or chapter purchase exists
Anonymous callers keep the purchase reason and get authentication_required
set on top of it; prices are still returned so the paywall can show them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import exists, or_, select

from ..extensions import db
from ..errors import NotFoundError
from ..models import Story, Chapter, PurchaseEntry
from ..models.purchases import PURCHASE_KIND_STORY, PURCHASE_KIND_CHAPTER, PURCHASE_STATUS_ACTIVE
from ..time_utils import utcnow

REASON_STORY_PURCHASED = "story_purchased"
REASON_STORY_NOT_PURCHASED = "story_not_purchased"
REASON_CHAPTER_PURCHASED = "chapter_purchased"
REASON_CHAPTER_NOT_PURCHASED = "chapter_not_purchased"
REASON_FREE_CONTENT = "free_content"


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    reason: str
    prices: dict = field(default_factory=dict)
    # No user present: log in before purchasing
    authentication_required: bool = False

    def to_dict(self) -> dict:
        payload = {"granted": self.granted, "reason": self.reason}
        if self.prices:
            payload["prices"] = dict(self.prices)
        if self.authentication_required:
            payload["authentication_required"] = True
        return payload


def has_active_purchase(user_id: int, kind: str, target_id: int) -> bool:
    """True iff the user holds an active, unexpired entry for (kind, target)."""
    now = utcnow()
    stmt = select(
        exists().where(
            PurchaseEntry.user_id == user_id,
            PurchaseEntry.kind == kind,
            PurchaseEntry.target_id == target_id,
            PurchaseEntry.status == PURCHASE_STATUS_ACTIVE,
            or_(PurchaseEntry.expires_at.is_(None), PurchaseEntry.expires_at > now),
        )
    )
    return bool(db.session.execute(stmt).scalar())


def _deny(user_id, reason: str, prices: dict) -> AccessDecision:
    return AccessDecision(
        granted=False,
        reason=reason,
        prices=prices,
        authentication_required=user_id is None,
    )


def _load_chapter(story_id: int, chapter_id: int) -> Chapter:
    chapter = db.session.get(Chapter, chapter_id)
    if chapter is None or chapter.story_id != story_id:
        raise NotFoundError("chapter_not_found", f"Chapter {chapter_id} not found in story {story_id}")
    return chapter


def check_access(user_id: int | None, story_id: int, chapter_id: int | None = None) -> AccessDecision:
    story = db.session.get(Story, story_id)
    if story is None:
        raise NotFoundError("story_not_found", f"Story {story_id} not found")

    if story.is_paid:
        if user_id is not None and has_active_purchase(user_id, PURCHASE_KIND_STORY, story.id):
            return AccessDecision(granted=True, reason=REASON_STORY_PURCHASED)
        return _deny(user_id, REASON_STORY_NOT_PURCHASED, {"story": story.price})

    if chapter_id is None:
        return AccessDecision(granted=True, reason=REASON_FREE_CONTENT)

    chapter = _load_chapter(story_id, chapter_id)
    if not chapter.is_paid:
        return AccessDecision(granted=True, reason=REASON_FREE_CONTENT)

    if user_id is not None:
        # A story purchase from an earlier whole-story period still covers every chapter
        if has_active_purchase(user_id, PURCHASE_KIND_STORY, story.id):
            return AccessDecision(granted=True, reason=REASON_STORY_PURCHASED)
        if has_active_purchase(user_id, PURCHASE_KIND_CHAPTER, chapter.id):
            return AccessDecision(granted=True, reason=REASON_CHAPTER_PURCHASED)

    return _deny(user_id, REASON_CHAPTER_NOT_PURCHASED, {"chapter": chapter.price})
