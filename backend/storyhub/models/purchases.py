from __future__ import annotations

from ..extensions import db
from storyhub.time_utils import to_utc_z


PURCHASE_KIND_STORY = "story"
PURCHASE_KIND_CHAPTER = "chapter"

PURCHASE_STATUS_ACTIVE = "active"
PURCHASE_STATUS_EXPIRED = "expired"
PURCHASE_STATUS_REFUNDED = "refunded"


class UserPurchases(db.Model):
    """
    Per-user purchase record.

    One row per user holding lifetime stats; the story-level and
    chapter-level purchase collections are the PurchaseEntry rows hanging
    off it (ordered by purchased_at).
    """
    __tablename__ = "user_purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, unique=True, index=True)

    total_stories_purchased = db.Column(db.Integer, nullable=False, default=0)
    total_chapters_purchased = db.Column(db.Integer, nullable=False, default=0)
    total_coins_spent = db.Column(db.Integer, nullable=False, default=0)
    first_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    entries = db.relationship(
        "PurchaseEntry",
        backref="record",
        lazy="dynamic",
        order_by="PurchaseEntry.purchased_at",
    )

    def stats_dict(self) -> dict:
        return {
            "total_stories_purchased": self.total_stories_purchased,
            "total_chapters_purchased": self.total_chapters_purchased,
            "total_coins_spent": self.total_coins_spent,
            "first_purchase_at": to_utc_z(self.first_purchase_at),
            "last_purchase_at": to_utc_z(self.last_purchase_at),
        }


class PurchaseEntry(db.Model):
    """
    A single story or chapter purchase.

    Entries are never deleted; expiry and refund are status transitions.
    The partial unique index allows at most one ACTIVE entry per
    (user, kind, target) and is what stops two concurrent purchases of the
    same target from both committing.
    """
    __tablename__ = "purchase_entries"
    __table_args__ = (
        db.Index(
            "uq_purchase_entries_active_target",
            "user_id", "kind", "target_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_purchase_entries_story_status", "story_id", "status"),
        db.Index("ix_purchase_entries_user_purchased", "user_id", "purchased_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_purchases_id = db.Column(db.Integer, db.ForeignKey("user_purchases.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False)

    # "story" or "chapter"; target_id is the story id or the chapter id
    kind = db.Column(db.String(16), nullable=False)
    target_id = db.Column(db.Integer, nullable=False)
    # Owning story, recorded for chapter purchases too so reporting needs no join
    story_id = db.Column(db.Integer, nullable=False)

    price_paid = db.Column(db.Integer, nullable=False)
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    transaction_ref = db.Column(db.String(64), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=PURCHASE_STATUS_ACTIVE)
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": self.kind,
            "target_id": self.target_id,
            "story_id": self.story_id,
            "price_paid": self.price_paid,
            "purchased_at": to_utc_z(self.purchased_at),
            "expires_at": to_utc_z(self.expires_at),
            "transaction_ref": self.transaction_ref,
            "status": self.status,
            "status_changed_at": to_utc_z(self.status_changed_at),
        }
