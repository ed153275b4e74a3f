# Overview: Service-layer operations for the coin ledger; balances and the append-only transaction log.

"""
Coin Ledger Invariants (authoritative)

- Balances change only through debit() and credit().
- debit() is a single conditional UPDATE (balance >= amount); it never
  drives a balance negative, even under concurrent callers.
- coin_transactions is append-only.
- Nothing here commits: callers write the ledger inside the same DB
  transaction as the domain event it pays for.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select, update

from ..extensions import db
from ..errors import InsufficientFundsError, ValidationError
from ..models import CoinAccount, CoinTransaction

TXN_TYPE_PURCHASE = "purchase"
TXN_TYPE_REFUND = "refund"
TXN_TYPE_CREDIT = "credit"

TXN_STATUS_COMPLETED = "completed"

logger = logging.getLogger(__name__)


def get_balance(user_id: int) -> int:
    balance = db.session.execute(
        select(CoinAccount.balance).where(CoinAccount.user_id == user_id)
    ).scalar()
    return balance or 0


def ensure_account(user_id: int) -> CoinAccount:
    """
    Ensure a user has exactly one coin account.

    Safe to call repeatedly (idempotent).
    """
    account = db.session.query(CoinAccount).filter_by(user_id=user_id).first()
    if account:
        return account

    account = CoinAccount(user_id=user_id, balance=0, total_spent=0, total_credited=0)
    db.session.add(account)
    db.session.flush()
    return account


def debit(user_id: int, amount: int, memo: str | None = None) -> int:
    """
    Take ``amount`` coins from the user's balance and return the new balance.

    Raises InsufficientFundsError (nothing written) when balance < amount.
    """
    if amount <= 0:
        raise ValidationError("invalid_price", "Debit amount must be positive")

    result = db.session.execute(
        update(CoinAccount)
        .where(CoinAccount.user_id == user_id, CoinAccount.balance >= amount)
        .values(
            balance=CoinAccount.balance - amount,
            total_spent=CoinAccount.total_spent + amount,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientFundsError(required=amount, balance=get_balance(user_id))

    new_balance = get_balance(user_id)
    logger.debug("Debited %d coins from user %s (%s); balance %d", amount, user_id, memo or "-", new_balance)
    return new_balance


def credit(user_id: int, amount: int, memo: str | None = None) -> int:
    """Add ``amount`` coins to the user's balance and return the new balance."""
    if amount <= 0:
        raise ValidationError("invalid_price", "Credit amount must be positive")

    ensure_account(user_id)
    db.session.execute(
        update(CoinAccount)
        .where(CoinAccount.user_id == user_id)
        .values(
            balance=CoinAccount.balance + amount,
            total_credited=CoinAccount.total_credited + amount,
        )
        .execution_options(synchronize_session=False)
    )
    new_balance = get_balance(user_id)
    logger.debug("Credited %d coins to user %s (%s); balance %d", amount, user_id, memo or "-", new_balance)
    return new_balance


def append_transaction(
    *,
    user_id: int,
    txn_type: str,
    coin_change: int,
    balance_after: int,
    reference_type: str = "other",
    reference_id: int | None = None,
    story_id: int | None = None,
    memo: str | None = None,
    status: str = TXN_STATUS_COMPLETED,
) -> CoinTransaction:
    """
    Append-only ledger entry.

    - No updates of amounts, no deletes.
    - transaction_ref is generated here and is what purchase entries store.
    """
    txn = CoinTransaction(
        transaction_ref=uuid.uuid4().hex,
        user_id=user_id,
        type=txn_type,
        coin_change=coin_change,
        balance_after=balance_after,
        status=status,
        reference_type=reference_type,
        reference_id=reference_id,
        story_id=story_id,
        memo=memo,
    )
    db.session.add(txn)
    db.session.flush()  # ensures txn.id is assigned without committing
    return txn


def get_transactions(user_id: int, limit: int = 20, offset: int = 0) -> list[CoinTransaction]:
    return (
        db.session.query(CoinTransaction)
        .filter_by(user_id=user_id)
        .order_by(CoinTransaction.created_at.desc(), CoinTransaction.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
