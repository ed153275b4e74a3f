# Overview: Pytest coverage for purchase-model business rules.

"""
Business Rule Tests

Covers the story rules (mutual exclusion, Model A/B/FREE pricing), the
chapter pricing rule against the owning story, and purchase compatibility.
"""

import logging

import pytest
from storyhub.errors import BusinessRuleViolation, ConflictError, NotFoundError, ValidationError
from storyhub.models import PurchaseModel
from storyhub.services.business_rules import (
    CHAPTER_PRICING_VIOLATION,
    FREE_MODEL_VIOLATION,
    MODEL_A_VIOLATION,
    MODEL_B_VIOLATION,
    MUTUAL_EXCLUSION_VIOLATION,
    StoryDraft,
    validate_chapter_pricing,
    validate_purchase_compatibility,
    validate_stories_accept_paid_chapters,
    validate_story,
    validate_with_suggestions,
)


class TestPurchaseModel:
    def test_derived_from_flags(self):
        assert PurchaseModel.of(True, False) is PurchaseModel.MODEL_A
        assert PurchaseModel.of(False, True) is PurchaseModel.MODEL_B
        assert PurchaseModel.of(False, False) is PurchaseModel.FREE

    def test_projects_back_to_flags(self):
        assert PurchaseModel.MODEL_A.to_flags() == {"is_paid": True, "has_paid_chapters": False}
        assert PurchaseModel.MODEL_B.to_flags() == {"is_paid": False, "has_paid_chapters": True}
        assert PurchaseModel.FREE.to_flags() == {"is_paid": False, "has_paid_chapters": False}


class TestValidateStory:
    def test_model_a_accepted(self):
        assert validate_story(StoryDraft(is_paid=True, has_paid_chapters=False, price=200)) is PurchaseModel.MODEL_A

    def test_model_b_accepted(self):
        assert validate_story(StoryDraft(is_paid=False, has_paid_chapters=True, price=0)) is PurchaseModel.MODEL_B

    def test_free_accepted(self):
        assert validate_story(StoryDraft(is_paid=False, has_paid_chapters=False, price=0)) is PurchaseModel.FREE

    def test_both_flags_rejected_as_mutual_exclusion(self):
        """Mutual exclusion wins even when the price would satisfy Model A."""
        with pytest.raises(BusinessRuleViolation) as exc:
            validate_story(StoryDraft(is_paid=True, has_paid_chapters=True, price=100))
        assert exc.value.code == MUTUAL_EXCLUSION_VIOLATION
        assert "Model A" in exc.value.hint

    @pytest.mark.parametrize("price", [None, 0])
    def test_model_a_requires_positive_price(self, price):
        with pytest.raises(BusinessRuleViolation) as exc:
            validate_story(StoryDraft(is_paid=True, has_paid_chapters=False, price=price))
        assert exc.value.code == MODEL_A_VIOLATION

    def test_model_b_rejects_story_price(self):
        with pytest.raises(BusinessRuleViolation) as exc:
            validate_story(StoryDraft(is_paid=False, has_paid_chapters=True, price=30))
        assert exc.value.code == MODEL_B_VIOLATION

    def test_free_rejects_price(self):
        with pytest.raises(BusinessRuleViolation) as exc:
            validate_story(StoryDraft(is_paid=False, has_paid_chapters=False, price=10))
        assert exc.value.code == FREE_MODEL_VIOLATION

    def test_negative_price_is_invalid(self):
        with pytest.raises(ValidationError) as exc:
            validate_story(StoryDraft(is_paid=True, has_paid_chapters=False, price=-5))
        assert exc.value.code == "invalid_price"


class TestValidateWithSuggestions:
    def test_valid_draft(self):
        report = validate_with_suggestions(StoryDraft(is_paid=True, has_paid_chapters=False, price=99))
        assert report.to_dict() == {"valid": True, "model": "MODEL_A", "errors": [], "suggestions": []}

    def test_invalid_draft_carries_hint(self):
        report = validate_with_suggestions(StoryDraft(is_paid=True, has_paid_chapters=True, price=99))
        assert report.valid is False
        assert report.errors[0]["code"] == MUTUAL_EXCLUSION_VIOLATION
        assert report.suggestions and "Model B" in report.suggestions[0]

    def test_from_mapping_defaults(self):
        draft = StoryDraft.from_mapping({"price": 0})
        assert draft.model is PurchaseModel.FREE


class TestValidateChapterPricing:
    def test_paid_chapter_rejected_in_model_a_story(self, db_session, make_story):
        story = make_story(is_paid=True, price=200)
        with pytest.raises(BusinessRuleViolation) as exc:
            validate_chapter_pricing(story.id, {"is_paid": True, "price": 10})
        assert exc.value.code == CHAPTER_PRICING_VIOLATION
        assert exc.value.details == {"story_id": story.id}

    def test_free_chapter_accepted_in_model_a_story(self, db_session, make_story):
        story = make_story(is_paid=True, price=200)
        assert validate_chapter_pricing(story.id, {"is_paid": False}) is PurchaseModel.MODEL_A

    def test_paid_chapter_on_free_story_logs_notice(self, db_session, make_story, caplog):
        """A free story is promoted lazily; the validator only notes it."""
        story = make_story()
        with caplog.at_level(logging.INFO, logger="storyhub.services.business_rules"):
            model = validate_chapter_pricing(story.id, {"is_paid": True, "price": 50}, lock=True)
        assert model is PurchaseModel.FREE
        assert "Model B" in caplog.text

    def test_paid_chapter_needs_positive_price(self, db_session, make_story):
        story = make_story()
        with pytest.raises(ValidationError) as exc:
            validate_chapter_pricing(story.id, {"is_paid": True, "price": 0})
        assert exc.value.code == "invalid_price"

    def test_missing_story(self, db_session):
        with pytest.raises(NotFoundError):
            validate_chapter_pricing(12345, {"is_paid": True, "price": 5})

    def test_bulk_check_lists_model_a_stories(self, db_session, make_story):
        free = make_story()
        whole = make_story(is_paid=True, price=100)
        validate_stories_accept_paid_chapters([free.id])
        with pytest.raises(BusinessRuleViolation) as exc:
            validate_stories_accept_paid_chapters([free.id, whole.id])
        assert exc.value.details == {"story_ids": [whole.id]}


class TestPurchaseCompatibility:
    def test_chapter_purchase_on_model_a_is_incompatible(self, db_session, make_story):
        story = make_story(is_paid=True, price=200)
        with pytest.raises(ConflictError) as exc:
            validate_purchase_compatibility(story, "chapter")
        assert exc.value.code == "incompatible_purchase_model"

    def test_story_purchase_requires_model_a(self, db_session, make_story):
        story = make_story(has_paid_chapters=True)
        with pytest.raises(ConflictError) as exc:
            validate_purchase_compatibility(story, "story")
        assert exc.value.code == "not_for_sale"

    def test_chapter_purchase_allowed_while_flag_lags(self, db_session, make_story):
        story = make_story()
        assert validate_purchase_compatibility(story, "chapter") is PurchaseModel.FREE

    def test_unknown_kind(self, db_session, make_story):
        story = make_story()
        with pytest.raises(ValidationError):
            validate_purchase_compatibility(story, "bundle")
