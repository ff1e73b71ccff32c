"""Live calendar and saved meal plan persistence."""

import logging
from datetime import date
from typing import Any

from sqlalchemy import delete, select

from nutriplan.models import MACRO_FIELDS, MealPlanEntry, SavedMealPlan, SavedMealPlanEntry, db
from nutriplan.storage import storage_errors

logger = logging.getLogger(__name__)


def parse_date(value: Any, field: str = "date") -> date:
    """Parse a 'YYYY-MM-DD' string (or pass a date through).

    Raises:
        ValueError: If the value is missing or not an ISO calendar date
    """
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required")
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValueError(f"{field} must be a date in YYYY-MM-DD format")


def entry_fields_from_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Validate a live or saved entry payload (camelCase keys)."""
    if not isinstance(data, dict):
        raise ValueError("Entry must be an object")

    meal_type = data.get("mealType")
    if not isinstance(meal_type, str) or not meal_type.strip():
        raise ValueError("mealType is required")

    fields: dict[str, Any] = {
        "date": parse_date(data.get("date")),
        "meal_type": meal_type.strip().lower(),
        "recipe_id": data.get("recipeId"),
        "custom_meal_name": data.get("customMealName"),
    }
    if fields["recipe_id"] is not None and (
        isinstance(fields["recipe_id"], bool) or not isinstance(fields["recipe_id"], int)
    ):
        raise ValueError("recipeId must be an integer")

    for field in MACRO_FIELDS:
        value = data.get(field)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise ValueError(f"{field} must be a number")
        fields[field] = int(round(value)) if value is not None else None

    return fields


def daily_nutrition(entries) -> dict[str, dict[str, int]]:
    """Sum the macro snapshots of *entries* per day.

    Returns:
        {"2024-05-06": {"calories": 1450, "protein": 90, "carbs": 160, "fat": 45}, ...}
    """
    daily_totals: dict[str, dict[str, int]] = {}

    for entry in entries:
        day = entry.date.isoformat()
        if day not in daily_totals:
            daily_totals[day] = dict.fromkeys(MACRO_FIELDS, 0)
        for field in MACRO_FIELDS:
            daily_totals[day][field] += getattr(entry, field) or 0

    return daily_totals


class MealPlanStore:
    """The live calendar: one entry per (user, date, meal type)."""

    def get(self, entry_id: int) -> MealPlanEntry | None:
        with storage_errors("load meal plan entry"):
            return db.session.get(MealPlanEntry, entry_id)

    def list_range(self, user_id: str, start: date, end: date) -> list[MealPlanEntry]:
        stmt = (
            select(MealPlanEntry)
            .where(
                MealPlanEntry.user_id == user_id,
                MealPlanEntry.date >= start,
                MealPlanEntry.date <= end,
            )
            .order_by(MealPlanEntry.date, MealPlanEntry.meal_type)
        )
        with storage_errors("list meal plan entries"):
            return list(db.session.scalars(stmt))

    def upsert(self, user_id: str, fields: dict[str, Any], commit: bool = True) -> MealPlanEntry:
        """Create or update the entry for fields' (date, meal_type).

        With commit=False the change is only added to the session, so the
        caller can commit it together with related rows.
        """
        with storage_errors("save meal plan entry"):
            entry = db.session.scalar(
                select(MealPlanEntry).where(
                    MealPlanEntry.user_id == user_id,
                    MealPlanEntry.date == fields["date"],
                    MealPlanEntry.meal_type == fields["meal_type"],
                )
            )
            if entry is None:
                entry = MealPlanEntry(user_id=user_id)
                db.session.add(entry)
            for column, value in fields.items():
                setattr(entry, column, value)
            if commit:
                db.session.commit()
            else:
                db.session.flush()
        return entry

    def delete_range(self, user_id: str, start: date, end: date) -> int:
        stmt = delete(MealPlanEntry).where(
            MealPlanEntry.user_id == user_id,
            MealPlanEntry.date >= start,
            MealPlanEntry.date <= end,
        )
        with storage_errors("clear meal plan entries"):
            result = db.session.execute(stmt)
            db.session.commit()
        return result.rowcount

    def delete(self, entry: MealPlanEntry) -> None:
        with storage_errors("delete meal plan entry"):
            db.session.delete(entry)
            db.session.commit()


class SavedMealPlanStore:
    """Named plan snapshots. Plans accumulate; nothing here upserts."""

    def get(self, plan_id: int) -> SavedMealPlan | None:
        with storage_errors("load saved meal plan"):
            return db.session.get(SavedMealPlan, plan_id)

    def list_for_user(self, user_id: str) -> list[SavedMealPlan]:
        stmt = (
            select(SavedMealPlan)
            .where(SavedMealPlan.user_id == user_id)
            .order_by(SavedMealPlan.created_at.desc(), SavedMealPlan.id.desc())
        )
        with storage_errors("list saved meal plans"):
            return list(db.session.scalars(stmt))

    def entries(self, plan_id: int) -> list[SavedMealPlanEntry]:
        stmt = (
            select(SavedMealPlanEntry)
            .where(SavedMealPlanEntry.saved_meal_plan_id == plan_id)
            .order_by(SavedMealPlanEntry.date, SavedMealPlanEntry.meal_type, SavedMealPlanEntry.id)
        )
        with storage_errors("list saved meal plan entries"):
            return list(db.session.scalars(stmt))

    def create(
        self,
        user_id: str,
        name: str,
        start_date: date,
        end_date: date,
        description: str | None = None,
        entries: list[dict[str, Any]] | None = None,
    ) -> SavedMealPlan:
        plan = SavedMealPlan(
            user_id=user_id,
            name=name,
            description=description,
            start_date=start_date,
            end_date=end_date,
        )
        with storage_errors("create saved meal plan"):
            db.session.add(plan)
            db.session.flush()
            for fields in entries or []:
                self.add_entry(plan, fields)
            db.session.commit()
        logger.info("Saved meal plan created", extra={"plan_id": plan.id, "user_id": user_id})
        return plan

    def add_entry(self, plan: SavedMealPlan, fields: dict[str, Any]) -> SavedMealPlanEntry:
        """Stage an entry on the session; the caller commits."""
        entry = SavedMealPlanEntry(saved_meal_plan_id=plan.id, **fields)
        db.session.add(entry)
        return entry

    def delete(self, plan: SavedMealPlan) -> None:
        plan_id = plan.id
        with storage_errors("delete saved meal plan"):
            db.session.delete(plan)
            db.session.commit()
        logger.info("Saved meal plan deleted", extra={"plan_id": plan_id})
