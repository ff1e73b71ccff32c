import json
import logging
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import select

from nutriplan import config
from nutriplan.models import Recipe, RecipeTag, User, db
from nutriplan.storage import storage_errors

logger = logging.getLogger(__name__)

_INT_FIELDS = ("prep_time", "cook_time", "servings", "calories", "protein", "carbs", "fat")

# Wire (camelCase) name -> column name
_WIRE_FIELDS = {
    "title": "title",
    "description": "description",
    "ingredients": "ingredients",
    "instructions": "instructions",
    "prepTime": "prep_time",
    "cookTime": "cook_time",
    "servings": "servings",
    "calories": "calories",
    "protein": "protein",
    "carbs": "carbs",
    "fat": "fat",
    "imageUrl": "image_url",
    "tags": "tags",
    "isPublic": "is_public",
}


class RecipeLoadError(Exception):
    """Raised when seed recipes cannot be loaded from file."""
    pass


def recipe_fields_from_dict(data: dict[str, Any], partial: bool = False) -> dict[str, Any]:
    """Validate an incoming recipe payload and map it onto column names.

    Accepts camelCase keys (API payloads, seed file). Macros and times must be
    non-negative integers or null; tags and ingredients must be lists. With
    *partial*, only the keys present are returned and title may be omitted.

    Raises:
        ValueError: If required fields are missing or a field has the wrong shape
    """
    if not isinstance(data, dict):
        raise ValueError("Recipe must be an object")

    title = data.get("title")
    if partial and "title" not in data:
        title = None
    elif not isinstance(title, str) or not title.strip():
        raise ValueError("Missing required fields: title")

    fields: dict[str, Any] = {}
    for wire_name, column in _WIRE_FIELDS.items():
        if wire_name in data:
            fields[column] = data[wire_name]

    if title is not None:
        fields["title"] = title.strip()

    for column in _INT_FIELDS:
        value = fields.get(column)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"{column} must be a non-negative number")
        fields[column] = int(round(value))

    for column in ("tags", "ingredients"):
        value = fields.get(column)
        if value is not None and not isinstance(value, list):
            raise ValueError(f"{column} must be a list")

    if "instructions" in fields and isinstance(fields["instructions"], list):
        fields["instructions"] = "\n".join(str(step) for step in fields["instructions"])

    if "is_public" in fields:
        fields["is_public"] = bool(fields["is_public"])

    return fields


def load_seed_recipes(file_path: Path | str) -> list[dict[str, Any]]:
    file_path = Path(file_path)

    if not file_path.exists():
        raise RecipeLoadError(f"Recipe file not found: {file_path}")

    try:
        with open(file_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise RecipeLoadError(f"Invalid JSON in recipe file: {e}")

    if "recipes" not in data:
        raise RecipeLoadError("Recipe file must contain a 'recipes' key")

    return data["recipes"]


def seed_recipes(file_path: Path | str | None = None) -> int:
    """Insert the system recipes once. Returns the number of recipes created.

    Creates the sentinel system user if needed and skips seeding entirely when
    any system-owned recipe already exists.
    """
    file_path = file_path or config.SEED_RECIPES_FILE
    raw_recipes = load_seed_recipes(file_path)

    with storage_errors("seed recipes"):
        if db.session.get(User, config.SYSTEM_USER_ID) is None:
            logger.info("Creating system user for seed recipes")
            db.session.add(User(
                id=config.SYSTEM_USER_ID,
                email="system@nutriplan.local",
                first_name="System",
                last_name="Generated",
            ))
            db.session.flush()

        existing = db.session.scalar(
            select(Recipe.id).where(Recipe.user_id == config.SYSTEM_USER_ID).limit(1)
        )
        if existing is not None:
            logger.info("System recipes already present, skipping seed")
            return 0

        created = 0
        for raw in raw_recipes:
            fields = recipe_fields_from_dict(raw)
            fields.setdefault("is_public", True)
            db.session.add(Recipe(user_id=config.SYSTEM_USER_ID, **fields))
            created += 1
        db.session.commit()

    logger.info("Seeded recipes", extra={"count": created, "file": str(file_path)})
    return created


class RecipeStore:
    """Read/write access to recipes.

    The ranking helpers only ever return public recipes; `exclude_ids` lets the
    caller keep passes disjoint so the database fills the requested limit.
    """

    def _public(self, exclude_ids=None):
        stmt = select(Recipe).where(Recipe.is_public.is_(True))
        if exclude_ids:
            stmt = stmt.where(Recipe.id.not_in(list(exclude_ids)))
        return stmt

    def get(self, recipe_id: int) -> Recipe | None:
        with storage_errors("load recipe"):
            return db.session.get(Recipe, recipe_id)

    def list_public(self, search: str = "", tag: str = "") -> list[Recipe]:
        stmt = self._public()
        if search:
            stmt = stmt.where(Recipe.title.ilike(f"%{search}%"))
        if tag:
            tagged = select(RecipeTag.recipe_id).where(RecipeTag.name == tag)
            stmt = stmt.where(Recipe.id.in_(tagged))
        stmt = stmt.order_by(Recipe.created_at.desc(), Recipe.id.desc())
        with storage_errors("list public recipes"):
            return list(db.session.scalars(stmt))

    def list_for_owner(self, user_id: str) -> list[Recipe]:
        stmt = (
            select(Recipe)
            .where(Recipe.user_id == user_id)
            .order_by(Recipe.created_at.desc(), Recipe.id.desc())
        )
        with storage_errors("list user recipes"):
            return list(db.session.scalars(stmt))

    def recent(self, user_id: str, limit: int = 3) -> list[Recipe]:
        """The user's newest recipes, topped up with other users' public ones."""
        own = (
            select(Recipe)
            .where(Recipe.user_id == user_id)
            .order_by(Recipe.created_at.desc(), Recipe.id.desc())
            .limit(limit)
        )
        with storage_errors("list recent recipes"):
            recipes = list(db.session.scalars(own))
            if len(recipes) < limit:
                others = (
                    self._public()
                    .where(Recipe.user_id != user_id)
                    .order_by(Recipe.created_at.desc(), Recipe.id.desc())
                    .limit(limit - len(recipes))
                )
                recipes.extend(db.session.scalars(others))
        return recipes

    def with_any_tag(self, tags, limit: int) -> list[Recipe]:
        """Public recipes carrying at least one of *tags*, newest first."""
        tags = list(tags)
        if not tags or limit <= 0:
            return []
        tagged = select(RecipeTag.recipe_id).where(RecipeTag.name.in_(tags))
        stmt = (
            self._public()
            .where(Recipe.id.in_(tagged))
            .order_by(Recipe.created_at.desc(), Recipe.id.desc())
            .limit(limit)
        )
        with storage_errors("query recipes by tag"):
            return list(db.session.scalars(stmt))

    def lowest_calorie(self, limit: int, exclude_ids=None) -> list[Recipe]:
        if limit <= 0:
            return []
        stmt = (
            self._public(exclude_ids)
            .order_by(Recipe.calories.asc().nulls_last(), Recipe.id)
            .limit(limit)
        )
        with storage_errors("query recipes by calories"):
            return list(db.session.scalars(stmt))

    def highest_protein(self, limit: int, exclude_ids=None) -> list[Recipe]:
        if limit <= 0:
            return []
        stmt = (
            self._public(exclude_ids)
            .order_by(Recipe.protein.desc().nulls_last(), Recipe.id)
            .limit(limit)
        )
        with storage_errors("query recipes by protein"):
            return list(db.session.scalars(stmt))

    def random_public(self, limit: int, rng: random.Random | None = None, exclude_ids=None) -> list[Recipe]:
        """Up to *limit* public recipes in random order.

        Sampling happens in Python over the candidate ids so a seeded *rng*
        gives repeatable results regardless of the database engine. Every
        eligible id is loaded per call, so cost grows with the public catalogue.
        """
        if limit <= 0:
            return []
        rng = rng or random.Random()
        id_stmt = self._public(exclude_ids).with_only_columns(Recipe.id).order_by(Recipe.id)
        with storage_errors("query random recipes"):
            candidate_ids = list(db.session.scalars(id_stmt))
            picked = rng.sample(candidate_ids, min(limit, len(candidate_ids)))
            if not picked:
                return []
            by_id = {r.id: r for r in db.session.scalars(select(Recipe).where(Recipe.id.in_(picked)))}
        return [by_id[i] for i in picked if i in by_id]

    def create(self, user_id: str, data: dict[str, Any]) -> Recipe:
        fields = recipe_fields_from_dict(data)
        recipe = Recipe(user_id=user_id, **fields)
        with storage_errors("create recipe"):
            db.session.add(recipe)
            db.session.commit()
        logger.info("Recipe created", extra={"recipe_id": recipe.id, "user_id": user_id})
        return recipe

    def update(self, recipe: Recipe, data: dict[str, Any]) -> Recipe:
        """Apply a partial payload; tags, when given, replace the existing set."""
        fields = recipe_fields_from_dict(data, partial=True)
        with storage_errors("update recipe"):
            for column, value in fields.items():
                setattr(recipe, column, value)
            recipe.updated_at = datetime.now(timezone.utc)
            db.session.commit()
        logger.info("Recipe updated", extra={"recipe_id": recipe.id, "fields": sorted(fields)})
        return recipe

    def delete(self, recipe: Recipe) -> None:
        recipe_id = recipe.id
        with storage_errors("delete recipe"):
            db.session.delete(recipe)
            db.session.commit()
        logger.info("Recipe deleted", extra={"recipe_id": recipe_id})


def delete_system_recipes() -> int:
    """Remove every system-owned recipe so the seed can be reapplied."""
    with storage_errors("delete system recipes"):
        recipes = list(db.session.scalars(select(Recipe).where(Recipe.user_id == config.SYSTEM_USER_ID)))
        for recipe in recipes:
            db.session.delete(recipe)
        db.session.commit()
    logger.info("Deleted system recipes", extra={"count": len(recipes)})
    return len(recipes)
