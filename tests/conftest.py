"""Pytest configuration and fixtures."""

# config.py switches to an in-memory SQLite database when pytest is detected

from datetime import datetime, timedelta, timezone

import pytest

from nutriplan import config
from nutriplan.main import app, limiter
from nutriplan.models import Recipe, User, UserPreferences, db

TEST_USER_ID = "user-1"

_BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def create_test_user(user_id: str = TEST_USER_ID, email: str | None = None) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        user = User(id=user_id, email=email or f"{user_id}@example.com", first_name="Test")
        db.session.add(user)
        db.session.commit()
    return user


def create_test_recipe(
    title: str,
    user_id: str = config.SYSTEM_USER_ID,
    calories: int | None = 400,
    protein: int | None = 20,
    carbs: int | None = 40,
    fat: int | None = 15,
    tags: list | None = None,
    is_public: bool = True,
    created_minutes: int | None = None,
    ingredients: list | None = None,
) -> Recipe:
    """Helper to insert a Recipe.

    created_minutes sets created_at to that many minutes after a fixed base
    time, for tests that depend on newest-first ordering.
    """
    create_test_user(user_id)
    recipe = Recipe(
        user_id=user_id,
        title=title,
        calories=calories,
        protein=protein,
        carbs=carbs,
        fat=fat,
        is_public=is_public,
        ingredients=ingredients or [],
        instructions="",
    )
    recipe.tags = tags or []
    if created_minutes is not None:
        recipe.created_at = _BASE_TIME + timedelta(minutes=created_minutes)
    db.session.add(recipe)
    db.session.commit()
    return recipe


def create_test_preferences(
    user_id: str = TEST_USER_ID,
    dietary_restrictions=None,
    goals=None,
    snacks_per_day: int | None = 0,
) -> UserPreferences:
    create_test_user(user_id)
    preferences = UserPreferences(
        user_id=user_id,
        dietary_restrictions=dietary_restrictions,
        goals=goals,
        snacks_per_day=snacks_per_day,
    )
    db.session.add(preferences)
    db.session.commit()
    return preferences


@pytest.fixture
def app_ctx():
    """Application context with a fresh schema."""
    app.config["TESTING"] = True
    app.config["WTF_CSRF_ENABLED"] = False
    with app.app_context():
        db.drop_all()
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app_ctx):
    """Test client without a logged-in user."""
    limiter.reset()
    with app.test_client() as client:
        yield client


@pytest.fixture
def auth_client(client):
    """Test client logged in as TEST_USER_ID."""
    create_test_user(TEST_USER_ID)
    with client.session_transaction() as sess:
        sess["user_id"] = TEST_USER_ID
    return client
