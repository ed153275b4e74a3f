# Overview: Service-layer operations for story and chapter purchases; debit, ledger and entitlement in one unit.

"""
Purchase Service

WHY: A purchase moves coins and grants an entitlement. The debit, the
ledger transaction and the purchase entry are written in ONE database
transaction, so a failure at any step leaves nothing behind (no debit
without an entitlement, no entitlement without a debit).

CONCURRENCY:
- The debit is a conditional UPDATE; the balance can never go negative.
- The partial unique index on active (user, kind, target) entries makes a
  second concurrent purchase of the same target fail at commit; the
  purchase is rerun once and then reports already_purchased.
- The purchase record is created in the same transaction, after every
  precondition, so a rejected purchase writes nothing.
- Lock/version conflicts are retried from a fresh snapshot.

LIFECYCLE:
active -> expired   (expires_at elapsed; expire_purchases)
active -> refunded  (refund_purchase; coins credited back)
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, EntitlementError, InsufficientFundsError, NotFoundError
from ..models import Story, Chapter, UserPurchases, PurchaseEntry
from ..models.purchases import (
    PURCHASE_KIND_STORY,
    PURCHASE_KIND_CHAPTER,
    PURCHASE_STATUS_ACTIVE,
    PURCHASE_STATUS_EXPIRED,
    PURCHASE_STATUS_REFUNDED,
)
from ..time_utils import utcnow
from . import ledger_service
from .access_service import has_active_purchase
from .business_rules import validate_purchase_compatibility
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


# =============================================================================
# PURCHASE RECORD
# =============================================================================

def _get_or_create_record(user_id: int) -> UserPurchases:
    """
    Return the user's purchase record, adding it on first purchase.

    Flushed, not committed: the row belongs to the purchase transaction.
    Two first purchases racing on the unique user_id fail at flush or
    commit with IntegrityError, and the loser is rerun by _run_purchase.
    """
    record = db.session.query(UserPurchases).filter_by(user_id=user_id).first()
    if record:
        return record

    record = UserPurchases(user_id=user_id)
    db.session.add(record)
    db.session.flush()
    return record


def _expire_elapsed_for_target(user_id: int, kind: str, target_id: int, now) -> None:
    # Frees the active-target slot held by an entry whose term has run out
    db.session.execute(
        update(PurchaseEntry)
        .where(
            PurchaseEntry.user_id == user_id,
            PurchaseEntry.kind == kind,
            PurchaseEntry.target_id == target_id,
            PurchaseEntry.status == PURCHASE_STATUS_ACTIVE,
            PurchaseEntry.expires_at.is_not(None),
            PurchaseEntry.expires_at <= now,
        )
        .values(status=PURCHASE_STATUS_EXPIRED, status_changed_at=now)
        .execution_options(synchronize_session=False)
    )


def _already_purchased(kind: str, target_id: int) -> ConflictError:
    return ConflictError(
        "already_purchased",
        f"This {kind} has already been purchased",
        details={"kind": kind, "target_id": target_id},
    )


# =============================================================================
# CHARGE (DEBIT + TRANSACTION + ENTRY)
# =============================================================================

def _charge(
    user_id: int,
    *,
    kind: str,
    target_id: int,
    story_id: int,
    price: int,
    memo: str,
    expires_at=None,
) -> dict:
    now = utcnow()

    balance = ledger_service.get_balance(user_id)
    if balance < price:
        raise InsufficientFundsError(required=price, balance=balance)

    record = _get_or_create_record(user_id)

    _expire_elapsed_for_target(user_id, kind, target_id, now)

    new_balance = ledger_service.debit(user_id, price, memo)
    txn = ledger_service.append_transaction(
        user_id=user_id,
        txn_type=ledger_service.TXN_TYPE_PURCHASE,
        coin_change=-price,
        balance_after=new_balance,
        reference_type=kind,
        reference_id=target_id,
        story_id=story_id,
        memo=memo,
    )

    entry = PurchaseEntry(
        user_purchases_id=record.id,
        user_id=user_id,
        kind=kind,
        target_id=target_id,
        story_id=story_id,
        price_paid=price,
        purchased_at=now,
        expires_at=expires_at,
        transaction_ref=txn.transaction_ref,
        status=PURCHASE_STATUS_ACTIVE,
    )
    db.session.add(entry)

    counter = (
        UserPurchases.total_stories_purchased if kind == PURCHASE_KIND_STORY
        else UserPurchases.total_chapters_purchased
    )
    db.session.execute(
        update(UserPurchases)
        .where(UserPurchases.id == record.id)
        .values({
            counter: counter + 1,
            UserPurchases.total_coins_spent: UserPurchases.total_coins_spent + price,
            UserPurchases.first_purchase_at: func.coalesce(UserPurchases.first_purchase_at, now),
            UserPurchases.last_purchase_at: now,
        })
        .execution_options(synchronize_session=False)
    )

    db.session.flush()
    db.session.commit()

    logger.info("User %s purchased %s %s for %d coins (balance %d)", user_id, kind, target_id, price, new_balance)
    return {
        "kind": kind,
        "target_id": target_id,
        "story_id": story_id,
        "amount": price,
        "balance_after": new_balance,
        "transaction_ref": txn.transaction_ref,
        "entry": entry.to_dict(),
    }


def _run_purchase(op, kind: str, target_id: int) -> dict:
    """
    Run a purchase, rerunning it once after a unique-constraint race.

    The rerun sees the winner's rows: a duplicate entry then fails the
    ownership precondition, a duplicate purchase record is simply reused.
    """
    for attempt in range(2):
        try:
            return run_with_retry(op)
        except IntegrityError:
            db.session.rollback()
            if attempt:
                logger.info("Concurrent purchase of %s %s rejected as duplicate", kind, target_id)
                raise _already_purchased(kind, target_id)
            logger.info("Purchase of %s %s lost a unique-constraint race; rerunning", kind, target_id)
        except EntitlementError:
            db.session.rollback()
            raise


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def purchase_story(user_id: int, story_id: int, *, expires_at=None) -> dict:
    """
    Buy a whole story (Model A).

    Checks, first failure wins: story exists, story is sold as a whole with
    price > 0, not already owned, balance covers the price.
    """
    def _op():
        story = db.session.get(Story, story_id)
        if story is None:
            raise NotFoundError("story_not_found", f"Story {story_id} not found")

        validate_purchase_compatibility(story, PURCHASE_KIND_STORY)

        if has_active_purchase(user_id, PURCHASE_KIND_STORY, story.id):
            raise _already_purchased(PURCHASE_KIND_STORY, story.id)

        receipt = _charge(
            user_id,
            kind=PURCHASE_KIND_STORY,
            target_id=story.id,
            story_id=story.id,
            price=story.price,
            memo=f"Purchase story: {story.name}",
            expires_at=expires_at,
        )
        receipt["story"] = {"id": story.id, "slug": story.slug, "name": story.name}
        return receipt

    return _run_purchase(_op, PURCHASE_KIND_STORY, story_id)


def purchase_chapter(user_id: int, chapter_id: int, *, expires_at=None) -> dict:
    """
    Buy a single chapter of a per-chapter (Model B) story.

    A chapter already covered by an active story purchase counts as
    purchased.
    """
    def _op():
        chapter = db.session.get(Chapter, chapter_id)
        if chapter is None:
            raise NotFoundError("chapter_not_found", f"Chapter {chapter_id} not found")
        story = chapter.story

        validate_purchase_compatibility(story, PURCHASE_KIND_CHAPTER)

        if not chapter.is_paid or chapter.price <= 0:
            raise ConflictError(
                "chapter_not_for_sale",
                f'Chapter "{chapter.name}" is free',
                details={"chapter_id": chapter.id},
            )

        if has_active_purchase(user_id, PURCHASE_KIND_STORY, story.id):
            raise _already_purchased(PURCHASE_KIND_STORY, story.id)
        if has_active_purchase(user_id, PURCHASE_KIND_CHAPTER, chapter.id):
            raise _already_purchased(PURCHASE_KIND_CHAPTER, chapter.id)

        receipt = _charge(
            user_id,
            kind=PURCHASE_KIND_CHAPTER,
            target_id=chapter.id,
            story_id=story.id,
            price=chapter.price,
            memo=f"Purchase chapter {chapter.number}: {chapter.name}",
            expires_at=expires_at,
        )
        receipt["story"] = {"id": story.id, "slug": story.slug, "name": story.name}
        receipt["chapter"] = {"id": chapter.id, "number": chapter.number, "name": chapter.name}
        return receipt

    return _run_purchase(_op, PURCHASE_KIND_CHAPTER, chapter_id)


def get_user_purchases(user_id: int) -> dict:
    """Active, unexpired story and chapter entries plus lifetime stats."""
    now = utcnow()
    entries = (
        db.session.query(PurchaseEntry)
        .filter(
            PurchaseEntry.user_id == user_id,
            PurchaseEntry.status == PURCHASE_STATUS_ACTIVE,
            or_(PurchaseEntry.expires_at.is_(None), PurchaseEntry.expires_at > now),
        )
        .order_by(PurchaseEntry.purchased_at, PurchaseEntry.id)
        .all()
    )
    record = db.session.query(UserPurchases).filter_by(user_id=user_id).first()
    if record:
        stats = record.stats_dict()
    else:
        stats = {
            "total_stories_purchased": 0,
            "total_chapters_purchased": 0,
            "total_coins_spent": 0,
            "first_purchase_at": None,
            "last_purchase_at": None,
        }

    return {
        "user_id": user_id,
        "balance": ledger_service.get_balance(user_id),
        "stories": [e.to_dict() for e in entries if e.kind == PURCHASE_KIND_STORY],
        "chapters": [e.to_dict() for e in entries if e.kind == PURCHASE_KIND_CHAPTER],
        "stats": stats,
    }


def expire_purchases(now=None) -> int:
    """Move active entries whose expires_at has passed to expired. Returns the count."""
    now = now or utcnow()
    result = db.session.execute(
        update(PurchaseEntry)
        .where(
            PurchaseEntry.status == PURCHASE_STATUS_ACTIVE,
            PurchaseEntry.expires_at.is_not(None),
            PurchaseEntry.expires_at <= now,
        )
        .values(status=PURCHASE_STATUS_EXPIRED, status_changed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    count = result.rowcount or 0
    logger.info("Expired %d purchase entries", count)
    return count


def refund_purchase(entry_id: int, reason: str | None = None) -> dict:
    """
    Refund an active purchase: the entry becomes refunded and its price is
    credited back, with a refund transaction in the ledger. One unit.
    """
    def _op():
        entry = lock_for_update(db.session.query(PurchaseEntry).filter_by(id=entry_id)).first()
        if entry is None:
            raise NotFoundError("purchase_not_found", f"Purchase {entry_id} not found")
        if entry.status != PURCHASE_STATUS_ACTIVE:
            raise ConflictError(
                "not_refundable",
                f"Purchase {entry_id} is {entry.status}",
                details={"status": entry.status},
            )

        now = utcnow()
        entry.status = PURCHASE_STATUS_REFUNDED
        entry.status_changed_at = now

        memo = f"Refund {entry.kind} {entry.target_id}" + (f": {reason}" if reason else "")
        new_balance = ledger_service.credit(entry.user_id, entry.price_paid, memo)
        txn = ledger_service.append_transaction(
            user_id=entry.user_id,
            txn_type=ledger_service.TXN_TYPE_REFUND,
            coin_change=entry.price_paid,
            balance_after=new_balance,
            reference_type=entry.kind,
            reference_id=entry.target_id,
            story_id=entry.story_id,
            memo=memo,
        )

        counter = (
            UserPurchases.total_stories_purchased if entry.kind == PURCHASE_KIND_STORY
            else UserPurchases.total_chapters_purchased
        )
        db.session.execute(
            update(UserPurchases)
            .where(UserPurchases.id == entry.user_purchases_id)
            .values({
                counter: counter - 1,
                UserPurchases.total_coins_spent: UserPurchases.total_coins_spent - entry.price_paid,
            })
            .execution_options(synchronize_session=False)
        )

        db.session.commit()
        logger.info("Refunded purchase %s (%d coins) to user %s", entry.id, entry.price_paid, entry.user_id)
        return {
            "entry": entry.to_dict(),
            "refunded": entry.price_paid,
            "balance_after": new_balance,
            "transaction_ref": txn.transaction_ref,
        }

    try:
        return run_with_retry(_op)
    except EntitlementError:
        db.session.rollback()
        raise
