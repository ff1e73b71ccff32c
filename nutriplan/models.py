"""
Database models.

Single SQLAlchemy instance plus every table the application reads or writes.
The meal plan generator writes two independent representations of the same
selection: `SavedMealPlan`/`SavedMealPlanEntry` (durable snapshots) and
`MealPlanEntry` (the live, editable calendar, one row per user/date/meal type).
"""

from datetime import datetime, timezone
from typing import Any

from flask_sqlalchemy import SQLAlchemy

# Initialised with the Flask app in main.py
db = SQLAlchemy()

MACRO_FIELDS = ("calories", "protein", "carbs", "fat")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def macro_snapshot(recipe: "Recipe") -> dict[str, int | None]:
    """Copy a recipe's macros so plan entries stay displayable if the recipe goes away."""
    return {field: getattr(recipe, field) for field in MACRO_FIELDS}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "createdAt": _iso(self.created_at),
        }


class RecipeTag(db.Model):
    """One free-text label on a recipe (e.g. 'vegan', 'high-protein')."""
    __tablename__ = "recipe_tags"

    id = db.Column(db.Integer, primary_key=True)
    recipe_id = db.Column(db.Integer, db.ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False, index=True)


class Recipe(db.Model):
    """Recipe with macros per serving and a visibility flag.

    Private recipes are only eligible for their owner; public ones for everybody.
    """
    __tablename__ = "recipes"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False, index=True)
    title = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, default="")
    ingredients = db.Column(db.JSON, default=list)
    instructions = db.Column(db.Text, default="")
    prep_time = db.Column(db.Integer, nullable=True)
    cook_time = db.Column(db.Integer, nullable=True)
    servings = db.Column(db.Integer, nullable=True)
    calories = db.Column(db.Integer, nullable=True)
    protein = db.Column(db.Integer, nullable=True)
    carbs = db.Column(db.Integer, nullable=True)
    fat = db.Column(db.Integer, nullable=True)
    image_url = db.Column(db.Text, nullable=True)
    is_public = db.Column(db.Boolean, default=False, nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    tag_rows = db.relationship(
        "RecipeTag", lazy="selectin", cascade="all, delete-orphan", order_by="RecipeTag.id"
    )

    @property
    def tags(self) -> list[str]:
        return [t.name for t in self.tag_rows]

    @tags.setter
    def tags(self, names: list[str]) -> None:
        # Keep first occurrence order, drop blanks and duplicates
        seen: list[str] = []
        for name in names or []:
            name = str(name).strip()
            if name and name not in seen:
                seen.append(name)
        self.tag_rows = [RecipeTag(name=name) for name in seen]

    def is_visible_to(self, user_id: str) -> bool:
        return bool(self.is_public) or self.user_id == user_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "ingredients": self.ingredients or [],
            "instructions": self.instructions,
            "prepTime": self.prep_time,
            "cookTime": self.cook_time,
            "servings": self.servings,
            "calories": self.calories,
            "protein": self.protein,
            "carbs": self.carbs,
            "fat": self.fat,
            "imageUrl": self.image_url,
            "tags": self.tags,
            "isPublic": bool(self.is_public),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class UserPreferences(db.Model):
    """Dietary preferences, at most one row per user.

    `dietary_restrictions` and `goals` are stored as raw JSON because older
    clients wrote different shapes (list vs. {name: bool}, string vs. list).
    Normalisation happens in nutriplan.preferences.
    """
    __tablename__ = "user_preferences"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False, unique=True)
    dietary_restrictions = db.Column(db.JSON, nullable=True)
    goals = db.Column(db.JSON, nullable=True)
    activity_level = db.Column(db.String(50), nullable=True)
    meal_frequency = db.Column(db.Integer, default=3)
    snacks_per_day = db.Column(db.Integer, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "dietaryRestrictions": self.dietary_restrictions,
            "goals": self.goals,
            "activityLevel": self.activity_level,
            "mealFrequency": self.meal_frequency,
            "snacksPerDay": self.snacks_per_day,
            "updatedAt": _iso(self.updated_at),
        }


class MealPlanEntry(db.Model):
    """Live calendar slot. At most one row per (user, date, meal type)."""
    __tablename__ = "meal_plans"
    __table_args__ = (
        db.UniqueConstraint("user_id", "date", "meal_type", name="unique_meal"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    meal_type = db.Column(db.String(20), nullable=False)
    recipe_id = db.Column(db.Integer, db.ForeignKey("recipes.id", ondelete="SET NULL"), nullable=True)
    custom_meal_name = db.Column(db.Text, nullable=True)
    calories = db.Column(db.Integer, nullable=True)
    protein = db.Column(db.Integer, nullable=True)
    carbs = db.Column(db.Integer, nullable=True)
    fat = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "date": _iso(self.date),
            "mealType": self.meal_type,
            "recipeId": self.recipe_id,
            "customMealName": self.custom_meal_name,
            "calories": self.calories,
            "protein": self.protein,
            "carbs": self.carbs,
            "fat": self.fat,
        }


class SavedMealPlan(db.Model):
    """Named snapshot of a plan over an inclusive date range."""
    __tablename__ = "saved_meal_plans"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, nullable=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    entries = db.relationship(
        "SavedMealPlanEntry", backref="saved_meal_plan", lazy=True, cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "description": self.description,
            "startDate": _iso(self.start_date),
            "endDate": _iso(self.end_date),
            "createdAt": _iso(self.created_at),
        }


class SavedMealPlanEntry(db.Model):
    """One slot of a saved plan. Carries its own macro snapshot."""
    __tablename__ = "saved_meal_plan_entries"

    id = db.Column(db.Integer, primary_key=True)
    saved_meal_plan_id = db.Column(
        db.Integer, db.ForeignKey("saved_meal_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date = db.Column(db.Date, nullable=False, index=True)
    meal_type = db.Column(db.String(20), nullable=False)
    recipe_id = db.Column(db.Integer, db.ForeignKey("recipes.id", ondelete="SET NULL"), nullable=True)
    custom_meal_name = db.Column(db.Text, nullable=True)
    calories = db.Column(db.Integer, nullable=True)
    protein = db.Column(db.Integer, nullable=True)
    carbs = db.Column(db.Integer, nullable=True)
    fat = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "savedMealPlanId": self.saved_meal_plan_id,
            "date": _iso(self.date),
            "mealType": self.meal_type,
            "recipeId": self.recipe_id,
            "customMealName": self.custom_meal_name,
            "calories": self.calories,
            "protein": self.protein,
            "carbs": self.carbs,
            "fat": self.fat,
        }
