from __future__ import annotations

import enum

from ..extensions import db
from storyhub.time_utils import to_utc_z


class PurchaseModel(enum.Enum):
    """
    Monetization mode of a story.

    Stored as two booleans (is_paid, has_paid_chapters) with one forbidden
    combination; every rule check works on this enum instead of the raw
    flags.

    - MODEL_A: whole-story purchase, chapters are free once the story is owned
    - MODEL_B: story is free, individual chapters are sold
    - FREE: nothing to buy
    """
    MODEL_A = "MODEL_A"
    MODEL_B = "MODEL_B"
    FREE = "FREE"

    @classmethod
    def of(cls, is_paid: bool, has_paid_chapters: bool) -> "PurchaseModel":
        # is_paid wins when both are set; the validator rejects that state on write
        if is_paid:
            return cls.MODEL_A
        if has_paid_chapters:
            return cls.MODEL_B
        return cls.FREE

    def to_flags(self) -> dict:
        return {
            "is_paid": self is PurchaseModel.MODEL_A,
            "has_paid_chapters": self is PurchaseModel.MODEL_B,
        }


class Story(db.Model):
    """
    Story document.

    has_paid_chapters is denormalized: it mirrors "at least one chapter of
    this story has is_paid = true" and is only written by the paid chapter
    repair service. version_id is bumped by every write to the mode fields
    (including repair) so concurrent mode edits fail with StaleDataError.
    """
    __tablename__ = "stories"
    __table_args__ = (
        db.Index("ix_stories_is_paid", "is_paid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)

    # Monetization
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    price = db.Column(db.Integer, nullable=False, default=0)
    has_paid_chapters = db.Column(db.Boolean, nullable=False, default=False)

    chapter_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def purchase_model(self) -> PurchaseModel:
        return PurchaseModel.of(self.is_paid, self.has_paid_chapters)

    def __repr__(self) -> str:
        return f"<Story id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "is_paid": self.is_paid,
            "price": self.price,
            "has_paid_chapters": self.has_paid_chapters,
            "purchase_model": self.purchase_model.value,
            "chapter_count": self.chapter_count,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Chapter(db.Model):
    """Chapter of a story. Owned by exactly one story via story_id."""
    __tablename__ = "chapters"
    __table_args__ = (
        db.UniqueConstraint("story_id", "number", name="uq_chapters_story_number"),
        # Backs the paid-chapter existence check and the grouped batch query
        db.Index("ix_chapters_story_paid", "story_id", "is_paid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    story_id = db.Column(db.Integer, db.ForeignKey("stories.id"), nullable=False, index=True)

    number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=True)

    # Monetization
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    price = db.Column(db.Integer, nullable=False, default=0)

    # Publish status and display flags
    status = db.Column(db.Boolean, nullable=False, default=False, index=True)
    show_ads = db.Column(db.Boolean, nullable=False, default=False)
    is_new = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    story = db.relationship("Story", backref=db.backref("chapters", lazy="dynamic"))

    def __repr__(self) -> str:
        return f"<Chapter id={self.id} story_id={self.story_id} number={self.number}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "story_id": self.story_id,
            "number": self.number,
            "name": self.name,
            "slug": self.slug,
            "is_paid": self.is_paid,
            "price": self.price,
            "status": self.status,
            "show_ads": self.show_ads,
            "is_new": self.is_new,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
