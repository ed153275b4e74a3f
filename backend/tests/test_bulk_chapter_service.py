# Overview: Pytest coverage for bulk chapter edits, pricing statistics and listings.

import pytest
from sqlalchemy.exc import OperationalError

from storyhub.errors import BusinessRuleViolation, NotFoundError, ValidationError
from storyhub.models import Story, Chapter
from storyhub.services import bulk_chapter_service, paid_chapters_service
from storyhub.services.bulk_chapter_service import (
    bulk_update_chapters,
    convert_chapters_to_free,
    convert_chapters_to_paid,
    get_chapter_stats,
    get_chapters_with_pricing,
)


@pytest.fixture
def batch_calls(monkeypatch):
    calls = []
    real = paid_chapters_service.repair_batch

    def spy(story_ids, batch_size=None):
        calls.append(list(story_ids))
        return real(story_ids, batch_size=batch_size)

    monkeypatch.setattr(paid_chapters_service, "repair_batch", spy)
    return calls


def _add_chapters(db_session, story, layout):
    """layout: list of (is_paid, price); numbered from 1."""
    chapters = [
        Chapter(story_id=story.id, number=n, name=f"Chapter {n}", is_paid=is_paid, price=price)
        for n, (is_paid, price) in enumerate(layout, start=1)
    ]
    db_session.add_all(chapters)
    db_session.commit()
    return chapters


class TestBulkUpdate:
    def test_flip_across_stories_repairs_only_flipped(self, db_session, make_story, batch_calls, app, monkeypatch):
        """500 chapters over 10 stories; 300 free chapters in 7 stories become paid."""
        monkeypatch.setitem(app.config, "BULK_WRITE_CHUNK_SIZE", 64)
        stories = [make_story() for _ in range(7)] + [make_story(has_paid_chapters=True) for _ in range(3)]

        all_ids = []
        for index, story in enumerate(stories):
            if index < 6:
                layout = [(False, 0)] * 43 + [(True, 10)] * 7
            elif index == 6:
                layout = [(False, 0)] * 42 + [(True, 10)] * 8
            else:
                layout = [(True, 10)] * 50
            all_ids.extend(c.id for c in _add_chapters(db_session, story, layout))

        result = bulk_update_chapters(chapter_ids=all_ids, fields={"is_paid": True, "price": 10})

        assert result["matched"] == 500
        assert result["modified"] == 300
        flipped = sorted(s.id for s in stories[:7])
        assert batch_calls == [flipped]
        assert result["repaired_story_ids"] == flipped

        db_session.expire_all()
        for story in stories:
            assert db_session.get(Story, story.id).has_paid_chapters is True
        assert db_session.query(Chapter).filter(Chapter.is_paid.is_(False)).count() == 0

    def test_unknown_fields_dropped(self, db_session, make_story, make_chapter, batch_calls):
        story = make_story()
        make_chapter(story)
        result = bulk_update_chapters(story_id=story.id, fields={"status": "true", "views": 9000})
        assert (result["matched"], result["modified"]) == (1, 1)
        assert batch_calls == []

    def test_story_and_ids_combine(self, db_session, make_story, make_chapter):
        one, two = make_story(), make_story()
        a = make_chapter(one)
        b = make_chapter(two)
        result = bulk_update_chapters(story_id=one.id, chapter_ids=[a.id, b.id], fields={"is_new": True})
        assert result["matched"] == 1

    def test_no_fields(self, db_session, make_story):
        with pytest.raises(ValidationError) as exc:
            bulk_update_chapters(story_id=make_story().id, fields={"views": 1})
        assert exc.value.code == "no_update_fields"

    def test_missing_target(self, db_session):
        with pytest.raises(ValidationError) as exc:
            bulk_update_chapters(fields={"status": True})
        assert exc.value.code == "missing_target"

    def test_no_matching_chapters(self, db_session, make_story):
        with pytest.raises(ValidationError) as exc:
            bulk_update_chapters(chapter_ids=[111, 222], fields={"status": True})
        assert exc.value.code == "no_matching_chapters"

    def test_unknown_story(self, db_session):
        with pytest.raises(NotFoundError):
            bulk_update_chapters(story_id=987, fields={"status": True})

    def test_negative_price(self, db_session, make_story):
        with pytest.raises(ValidationError) as exc:
            bulk_update_chapters(story_id=make_story().id, fields={"price": -1})
        assert exc.value.code == "invalid_price"

    def test_paid_into_model_a_rejected(self, db_session, make_story, make_chapter):
        story = make_story(is_paid=True, price=100)
        make_chapter(story)
        with pytest.raises(BusinessRuleViolation) as exc:
            bulk_update_chapters(story_id=story.id, fields={"is_paid": True, "price": 5})
        assert exc.value.details == {"story_ids": [story.id]}

    def test_paid_without_price_on_unpriced_chapters(self, db_session, make_story, make_chapter):
        story = make_story()
        make_chapter(story)
        with pytest.raises(ValidationError) as exc:
            bulk_update_chapters(story_id=story.id, fields={"is_paid": True})
        assert exc.value.code == "invalid_price"

    def test_zero_price_on_paid_chapters_rejected(self, db_session, make_story, make_chapter):
        story = make_story(has_paid_chapters=True)
        make_chapter(story)
        paid = make_chapter(story, is_paid=True, price=10)
        with pytest.raises(ValidationError) as exc:
            bulk_update_chapters(story_id=story.id, fields={"price": 0})
        assert exc.value.details == {"chapter_ids": [paid.id]}

    def test_unpaid_without_price_zeroes_price(self, db_session, make_story, make_chapter):
        story = make_story(has_paid_chapters=True)
        first = make_chapter(story, is_paid=True, price=10)
        second = make_chapter(story, is_paid=True, price=25)

        result = bulk_update_chapters(story_id=story.id, fields={"is_paid": False})

        assert (result["matched"], result["modified"]) == (2, 2)
        db_session.expire_all()
        for chapter_id in (first.id, second.id):
            chapter = db_session.get(Chapter, chapter_id)
            assert (chapter.is_paid, chapter.price) == (False, 0)
        assert db_session.get(Story, story.id).has_paid_chapters is False

    def test_repair_failure_does_not_fail_update(self, db_session, make_story, make_chapter, monkeypatch, caplog):
        story = make_story()
        chapter = make_chapter(story)

        def broken(_ids, batch_size=None):
            raise OperationalError("SELECT", {}, Exception("locked"))

        monkeypatch.setattr(paid_chapters_service, "repair_batch", broken)
        result = bulk_update_chapters(chapter_ids=[chapter.id], fields={"is_paid": True, "price": 3})

        assert result["modified"] == 1
        assert result["repair"] == []
        assert "repair failed" in caplog.text
        db_session.expire_all()
        assert db_session.get(Chapter, chapter.id).is_paid is True

    def test_too_many_ids(self, db_session, app, monkeypatch):
        monkeypatch.setitem(app.config, "BULK_MAX_CHAPTER_IDS", 2)
        with pytest.raises(ValidationError):
            bulk_update_chapters(chapter_ids=[1, 2, 3], fields={"status": True})


class TestConvert:
    def test_convert_to_paid_then_free(self, db_session, make_story, make_chapter):
        story = make_story()
        make_chapter(story)
        make_chapter(story)

        assert convert_chapters_to_paid(25, story_id=story.id)["modified"] == 2
        db_session.expire_all()
        assert db_session.get(Story, story.id).has_paid_chapters is True

        assert convert_chapters_to_free(story_id=story.id)["modified"] == 2
        db_session.expire_all()
        assert db_session.get(Story, story.id).has_paid_chapters is False
        assert {c.price for c in db_session.query(Chapter)} == {0}

    def test_convert_to_paid_needs_price(self, db_session, make_story):
        with pytest.raises(ValidationError):
            convert_chapters_to_paid(0, story_id=make_story().id)


class TestStatsAndListing:
    def test_chapter_stats(self, db_session, make_story, make_chapter):
        story = make_story(has_paid_chapters=True)
        make_chapter(story, is_paid=True, price=10)
        make_chapter(story, is_paid=True, price=30)
        make_chapter(story)

        stats = get_chapter_stats(story.id)
        assert stats["total_chapters"] == 3
        assert stats["paid_chapters"] == 2
        assert stats["free_chapters"] == 1
        assert stats["total_paid_price"] == 40
        assert stats["avg_paid_price"] == 20
        assert (stats["min_paid_price"], stats["max_paid_price"]) == (10, 30)

    def test_stats_without_chapters(self, db_session, make_story):
        stats = get_chapter_stats(make_story().id)
        assert stats["total_chapters"] == 0 and stats["avg_paid_price"] == 0

    def test_pricing_listing_filters_and_paginates(self, db_session, make_story, make_chapter):
        story = make_story(has_paid_chapters=True)
        for n in range(1, 6):
            make_chapter(story, is_paid=n % 2 == 1, price=n if n % 2 == 1 else 0)

        page = get_chapters_with_pricing(story.id, is_paid=True, page=1, per_page=2)
        assert [c["number"] for c in page["chapters"]] == [1, 3]
        assert page["pagination"] == {"page": 1, "per_page": 2, "total": 3, "pages": 2}

        assert bulk_chapter_service.get_chapters_with_pricing(story.id)["pagination"]["total"] == 5
