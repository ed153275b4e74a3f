"""
Pytest fixtures for storyhub backend tests.

Provides test database setup, story/chapter/coin factories, and test client.
"""

import itertools

import pytest
from storyhub import create_app
from storyhub.config import TestConfig
from storyhub.extensions import db
from storyhub.models import Story, Chapter, CoinAccount


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_story(db_session):
    """Factory: insert a story row directly (bypasses the rule validator)."""
    counter = itertools.count(1)

    def _make(name=None, is_paid=False, price=0, has_paid_chapters=False):
        n = next(counter)
        story = Story(
            slug=f"story-{n}",
            name=name or f"Story {n}",
            is_paid=is_paid,
            price=price,
            has_paid_chapters=has_paid_chapters,
        )
        db_session.add(story)
        db_session.commit()
        return story

    return _make


@pytest.fixture(scope='function')
def make_chapter(db_session):
    """Factory: insert a chapter row directly (no repair is triggered)."""
    numbers = {}

    def _make(story, is_paid=False, price=0, number=None, name=None):
        if number is None:
            number = numbers.get(story.id, 0) + 1
        numbers[story.id] = max(number, numbers.get(story.id, 0))
        chapter = Chapter(
            story_id=story.id,
            number=number,
            name=name or f"Chapter {number}",
            is_paid=is_paid,
            price=price,
        )
        db_session.add(chapter)
        db_session.commit()
        return chapter

    return _make


@pytest.fixture(scope='function')
def fund_user(db_session):
    """Factory: give a user a coin account with the given balance."""
    def _fund(user_id, balance):
        account = CoinAccount(user_id=user_id, balance=balance, total_spent=0, total_credited=balance)
        db_session.add(account)
        db_session.commit()
        return account

    return _fund

