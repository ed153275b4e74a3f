# Overview: Read-only revenue reporting aggregated from purchase entries.

from __future__ import annotations

from sqlalchemy import case, func

from ..extensions import db
from ..models import Story, PurchaseEntry
from ..models.purchases import PURCHASE_KIND_STORY, PURCHASE_KIND_CHAPTER, PURCHASE_STATUS_REFUNDED


def get_story_revenue(story_id: int | None = None) -> list[dict]:
    """
    Coins earned per story, split by story and chapter purchases.

    Refunded entries are excluded; expired ones still count (they were paid).
    Grouped on purchase_entries.story_id, so chapters are never joined.
    """
    story_amount = case((PurchaseEntry.kind == PURCHASE_KIND_STORY, PurchaseEntry.price_paid), else_=0)
    chapter_amount = case((PurchaseEntry.kind == PURCHASE_KIND_CHAPTER, PurchaseEntry.price_paid), else_=0)

    query = (
        db.session.query(
            PurchaseEntry.story_id.label("story_id"),
            Story.name.label("story_name"),
            func.coalesce(func.sum(story_amount), 0).label("story_revenue"),
            func.coalesce(func.sum(chapter_amount), 0).label("chapter_revenue"),
            func.sum(case((PurchaseEntry.kind == PURCHASE_KIND_STORY, 1), else_=0)).label("story_purchases"),
            func.sum(case((PurchaseEntry.kind == PURCHASE_KIND_CHAPTER, 1), else_=0)).label("chapter_purchases"),
        )
        .outerjoin(Story, Story.id == PurchaseEntry.story_id)
        .filter(PurchaseEntry.status != PURCHASE_STATUS_REFUNDED)
        .group_by(PurchaseEntry.story_id, Story.name)
        .order_by(PurchaseEntry.story_id)
    )
    if story_id is not None:
        query = query.filter(PurchaseEntry.story_id == story_id)

    return [
        {
            "story_id": row.story_id,
            "story_name": row.story_name,
            "story_revenue": int(row.story_revenue),
            "chapter_revenue": int(row.chapter_revenue),
            "total_revenue": int(row.story_revenue) + int(row.chapter_revenue),
            "story_purchases": int(row.story_purchases or 0),
            "chapter_purchases": int(row.chapter_purchases or 0),
        }
        for row in query.all()
    ]
