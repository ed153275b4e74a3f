# Overview: Pytest coverage for the access resolver decision table.

from datetime import timedelta

import pytest
from storyhub.errors import NotFoundError
from storyhub.models import UserPurchases, PurchaseEntry
from storyhub.services.access_service import check_access
from storyhub.time_utils import utcnow


@pytest.fixture
def grant(db_session):
    """Factory: record an entitlement without going through the purchase flow."""
    def _grant(user_id, kind, target_id, story_id, expires_at=None, status="active"):
        record = db_session.query(UserPurchases).filter_by(user_id=user_id).first()
        if record is None:
            record = UserPurchases(user_id=user_id)
            db_session.add(record)
            db_session.flush()
        entry = PurchaseEntry(
            user_purchases_id=record.id,
            user_id=user_id,
            kind=kind,
            target_id=target_id,
            story_id=story_id,
            price_paid=1,
            purchased_at=utcnow(),
            expires_at=expires_at,
            transaction_ref=f"ref-{kind}-{target_id}-{user_id}",
            status=status,
        )
        db_session.add(entry)
        db_session.commit()
        return entry

    return _grant


class TestWholeStoryMode:
    def test_denied_without_purchase(self, db_session, make_story):
        story = make_story(is_paid=True, price=200)
        decision = check_access(7, story.id)
        assert decision.to_dict() == {"granted": False, "reason": "story_not_purchased", "prices": {"story": 200}}

    def test_story_purchase_unlocks_every_chapter(self, db_session, make_story, make_chapter, grant):
        story = make_story(is_paid=True, price=200)
        chapter = make_chapter(story)
        grant(7, "story", story.id, story.id)

        assert check_access(7, story.id).reason == "story_purchased"
        decision = check_access(7, story.id, chapter.id)
        assert decision.granted is True and decision.reason == "story_purchased"

    def test_anonymous_keeps_reason_and_needs_login(self, db_session, make_story):
        story = make_story(is_paid=True, price=200)
        decision = check_access(None, story.id)
        assert decision.to_dict() == {
            "granted": False,
            "reason": "story_not_purchased",
            "prices": {"story": 200},
            "authentication_required": True,
        }

    def test_chapter_id_ignored_for_owner(self, db_session, make_story, make_chapter, grant):
        elsewhere = make_story(has_paid_chapters=True)
        foreign = make_chapter(elsewhere, is_paid=True, price=5)
        story = make_story(is_paid=True, price=200)
        grant(3, "story", story.id, story.id)

        assert check_access(3, story.id, foreign.id).reason == "story_purchased"
        assert check_access(3, story.id, 424242).reason == "story_purchased"

    def test_chapter_id_ignored_when_denied(self, db_session, make_story):
        story = make_story(is_paid=True, price=200)
        decision = check_access(4, story.id, 424242)
        assert decision.reason == "story_not_purchased"
        assert decision.prices == {"story": 200}


class TestPerChapterMode:
    def test_story_browsing_is_free(self, db_session, make_story, make_chapter):
        story = make_story(has_paid_chapters=True)
        make_chapter(story, is_paid=True, price=50)
        assert check_access(None, story.id).to_dict() == {"granted": True, "reason": "free_content"}

    def test_free_chapter(self, db_session, make_story, make_chapter):
        story = make_story(has_paid_chapters=True)
        chapter = make_chapter(story)
        assert check_access(None, story.id, chapter.id).reason == "free_content"

    def test_paid_chapter_denied_anonymous(self, db_session, make_story, make_chapter):
        """Flag not yet repaired: the chapter's own is_paid still decides."""
        story = make_story()
        chapter = make_chapter(story, is_paid=True, price=50)
        decision = check_access(None, story.id, chapter.id)
        assert decision.granted is False
        assert decision.reason == "chapter_not_purchased"
        assert decision.prices == {"chapter": 50}
        assert decision.authentication_required is True

    def test_paid_chapter_denied_user(self, db_session, make_story, make_chapter):
        story = make_story(has_paid_chapters=True)
        chapter = make_chapter(story, is_paid=True, price=50)
        decision = check_access(3, story.id, chapter.id)
        assert decision.to_dict() == {"granted": False, "reason": "chapter_not_purchased", "prices": {"chapter": 50}}

    def test_chapter_purchase_grants(self, db_session, make_story, make_chapter, grant):
        story = make_story(has_paid_chapters=True)
        chapter = make_chapter(story, is_paid=True, price=50)
        other = make_chapter(story, is_paid=True, price=50)
        grant(3, "chapter", chapter.id, story.id)

        assert check_access(3, story.id, chapter.id).reason == "chapter_purchased"
        assert check_access(3, story.id, other.id).granted is False

    def test_earlier_story_purchase_short_circuits(self, db_session, make_story, make_chapter, grant):
        story = make_story(has_paid_chapters=True)
        chapter = make_chapter(story, is_paid=True, price=50)
        grant(3, "story", story.id, story.id)
        assert check_access(3, story.id, chapter.id).reason == "story_purchased"


class TestEntryLifecycle:
    def test_elapsed_entry_is_not_owned(self, db_session, make_story, make_chapter, grant):
        story = make_story(has_paid_chapters=True)
        chapter = make_chapter(story, is_paid=True, price=50)
        entry = grant(3, "chapter", chapter.id, story.id, expires_at=utcnow() - timedelta(minutes=1))

        assert check_access(3, story.id, chapter.id).granted is False
        # Resolver never writes
        db_session.expire_all()
        assert db_session.get(PurchaseEntry, entry.id).status == "active"

    def test_refunded_entry_is_not_owned(self, db_session, make_story, grant):
        story = make_story(is_paid=True, price=10)
        grant(3, "story", story.id, story.id, status="refunded")
        assert check_access(3, story.id).granted is False


class TestFaults:
    def test_missing_story(self, db_session):
        with pytest.raises(NotFoundError) as exc:
            check_access(1, 98765)
        assert exc.value.code == "story_not_found"

    def test_chapter_of_other_story(self, db_session, make_story, make_chapter):
        story, other = make_story(), make_story()
        chapter = make_chapter(other)
        with pytest.raises(NotFoundError) as exc:
            check_access(1, story.id, chapter.id)
        assert exc.value.code == "chapter_not_found"

    def test_missing_chapter_in_per_chapter_story(self, db_session, make_story):
        story = make_story(has_paid_chapters=True)
        with pytest.raises(NotFoundError) as exc:
            check_access(1, story.id, 424242)
        assert exc.value.code == "chapter_not_found"

    def test_deterministic(self, db_session, make_story, make_chapter):
        story = make_story(has_paid_chapters=True)
        chapter = make_chapter(story, is_paid=True, price=50)
        assert check_access(4, story.id, chapter.id) == check_access(4, story.id, chapter.id)
