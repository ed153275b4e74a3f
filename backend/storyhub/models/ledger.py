from __future__ import annotations

from ..extensions import db
from storyhub.time_utils import to_utc_z


class CoinAccount(db.Model):
    """Coin balance of a user. Only the ledger service mutates it."""
    __tablename__ = "coin_accounts"
    __table_args__ = (
        db.CheckConstraint("balance >= 0", name="ck_coin_accounts_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, unique=True, index=True)

    balance = db.Column(db.Integer, nullable=False, default=0)
    total_spent = db.Column(db.Integer, nullable=False, default=0)
    total_credited = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "balance": self.balance,
            "total_spent": self.total_spent,
            "total_credited": self.total_credited,
        }


class CoinTransaction(db.Model):
    """
    Append-only coin ledger entry.

    WHY: Every debit/credit leaves an immutable trace; purchase entries
    point back here through transaction_ref.
    """
    __tablename__ = "coin_transactions"
    __table_args__ = (
        db.Index("ix_coin_transactions_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_ref = db.Column(db.String(64), nullable=False, unique=True, index=True)
    user_id = db.Column(db.Integer, nullable=False)

    # purchase, refund, credit
    type = db.Column(db.String(16), nullable=False)
    coin_change = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    # pending, completed, failed
    status = db.Column(db.String(16), nullable=False, default="completed")

    # story, chapter, other
    reference_type = db.Column(db.String(16), nullable=False, default="other")
    reference_id = db.Column(db.Integer, nullable=True)
    story_id = db.Column(db.Integer, nullable=True)
    memo = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_ref": self.transaction_ref,
            "user_id": self.user_id,
            "type": self.type,
            "coin_change": self.coin_change,
            "balance_after": self.balance_after,
            "status": self.status,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "story_id": self.story_id,
            "memo": self.memo,
            "created_at": to_utc_z(self.created_at),
        }
