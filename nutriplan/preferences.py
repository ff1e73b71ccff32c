"""User preference storage and normalisation.

Preferences were written by several generations of the client, so
`dietary_restrictions` may be a list of names or a {name: bool} map and
`goals` may be a single string or a list. Everything downstream works on the
canonical forms produced here:

    normalize_restrictions(["Gluten Free"])          -> {"Gluten Free"}
    normalize_restrictions({"vegan": True, "keto": False}) -> {"vegan"}
    restriction_to_tag("Gluten Free")                -> "gluten-free"
    normalize_goals("Weight Loss")                   -> {"weight loss"}

Shapes that can't be interpreted are logged and treated as "no preference".
"""

import enum
import logging
import re
from typing import Any

from sqlalchemy import select

from nutriplan.models import UserPreferences, db
from nutriplan.storage import storage_errors

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

WEIGHT_LOSS_KEYWORDS = ("weight loss", "lose weight")
MUSCLE_GAIN_KEYWORDS = ("muscle", "strength", "gain")


class GoalStrategy(enum.Enum):
    """How the goal pass orders public recipes."""
    LOWEST_CALORIE = "lowest_calorie"
    HIGHEST_PROTEIN = "highest_protein"


def restriction_to_tag(name: str) -> str:
    """Lower-case and hyphenate a restriction name: 'Low Carb' -> 'low-carb'."""
    return _WHITESPACE.sub("-", name.strip().lower())


def normalize_restrictions(raw: Any) -> set[str]:
    """Return the set of active restriction names from either legacy encoding."""
    if raw is None:
        return set()
    if isinstance(raw, (list, tuple, set)):
        return {r for r in raw if isinstance(r, str) and r.strip()}
    if isinstance(raw, dict):
        return {k for k, v in raw.items() if v is True and isinstance(k, str) and k.strip()}
    logger.warning("Ignoring dietary restrictions in unexpected format", extra={"type": type(raw).__name__})
    return set()


def normalize_goals(raw: Any) -> set[str]:
    """Return lower-cased goal strings from a string or a list of strings."""
    if raw is None:
        return set()
    if isinstance(raw, str):
        return {raw.lower()} if raw.strip() else set()
    if isinstance(raw, (list, tuple, set)):
        return {g.lower() for g in raw if isinstance(g, str) and g.strip()}
    logger.warning("Ignoring goals in unexpected format", extra={"type": type(raw).__name__})
    return set()


def restriction_tags(raw: Any) -> set[str]:
    return {restriction_to_tag(name) for name in normalize_restrictions(raw)}


def goal_strategy(goals: set[str]) -> GoalStrategy | None:
    """Pick the goal pass ordering. Weight loss wins over muscle gain."""
    if any(keyword in goal for goal in goals for keyword in WEIGHT_LOSS_KEYWORDS):
        return GoalStrategy.LOWEST_CALORIE
    if any(keyword in goal for goal in goals for keyword in MUSCLE_GAIN_KEYWORDS):
        return GoalStrategy.HIGHEST_PROTEIN
    return None


def snack_count(preferences: UserPreferences | None) -> int:
    if preferences is None:
        return 0
    value = preferences.snacks_per_day
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(value, 0)


# Wire (camelCase) name -> column name
_WIRE_FIELDS = {
    "dietaryRestrictions": "dietary_restrictions",
    "goals": "goals",
    "activityLevel": "activity_level",
    "mealFrequency": "meal_frequency",
    "snacksPerDay": "snacks_per_day",
}


def preference_fields_from_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Validate a preferences payload for storage.

    Restrictions and goals are stored as sent (normalised on read); the
    numeric fields must be non-negative integers.

    Raises:
        ValueError: If a field has an unusable shape
    """
    if not isinstance(data, dict):
        raise ValueError("Preferences must be an object")

    fields = {column: data[wire] for wire, column in _WIRE_FIELDS.items() if wire in data}

    restrictions = fields.get("dietary_restrictions")
    if restrictions is not None and not isinstance(restrictions, (list, dict)):
        raise ValueError("dietaryRestrictions must be a list or an object")

    goals = fields.get("goals")
    if goals is not None and not isinstance(goals, (str, list)):
        raise ValueError("goals must be a string or a list")

    for column in ("meal_frequency", "snacks_per_day"):
        value = fields.get(column)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"{column} must be a non-negative integer")

    return fields


class PreferenceStore:
    def get(self, user_id: str) -> UserPreferences | None:
        with storage_errors("load preferences"):
            return db.session.scalar(select(UserPreferences).where(UserPreferences.user_id == user_id))

    def upsert(self, user_id: str, data: dict[str, Any]) -> UserPreferences:
        fields = preference_fields_from_dict(data)
        with storage_errors("save preferences"):
            preferences = db.session.scalar(select(UserPreferences).where(UserPreferences.user_id == user_id))
            if preferences is None:
                preferences = UserPreferences(user_id=user_id)
                db.session.add(preferences)
            for column, value in fields.items():
                setattr(preferences, column, value)
            db.session.commit()
        logger.info("Preferences saved", extra={"user_id": user_id})
        return preferences
