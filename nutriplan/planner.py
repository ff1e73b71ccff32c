import logging
import random
from datetime import date, timedelta
from typing import Iterator

from nutriplan import config
from nutriplan.meal_plans import MealPlanStore, SavedMealPlanStore
from nutriplan.models import Recipe, SavedMealPlan, db, macro_snapshot
from nutriplan.preferences import PreferenceStore, snack_count
from nutriplan.ranking import RecipeRanker
from nutriplan.recipes import RecipeStore
from nutriplan.storage import StorageError, storage_errors

logger = logging.getLogger(__name__)


class MealPlanGenerationError(Exception):
    """Raised when a generated slot cannot be written."""
    pass


def meal_types_for(snacks: int) -> list[str]:
    """Meal-type slots for one day.

    Example:
        meal_types_for(2) -> ["breakfast", "lunch", "dinner", "snack", "snack"]
    """
    snacks = max(0, min(snacks, config.MAX_SNACK_SLOTS))
    return list(config.BASE_MEAL_TYPES) + [config.SNACK_MEAL_TYPE] * snacks


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every date from start to end inclusive. Nothing when end < start."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


class MealPlanGenerator:
    """Fill a date range with suggested recipes.

    Every selection is written twice: as an entry of a new SavedMealPlan and as
    the user's live calendar entry for that (date, meal type). Recipes rotate
    out of the candidate pool after use, but the pool never shrinks below
    three, so short pools repeat recipes instead of leaving slots empty.

    Snack slots all share the "snack" meal type. The saved plan keeps every
    snack, while the live calendar holds one row per (date, meal type) and so
    keeps only the last snack written for each day.
    """

    def __init__(
        self,
        ranker: RecipeRanker | None = None,
        recipe_store: RecipeStore | None = None,
        preference_store: PreferenceStore | None = None,
        meal_plan_store: MealPlanStore | None = None,
        saved_plan_store: SavedMealPlanStore | None = None,
        rng: random.Random | None = None,
    ):
        self.rng = rng or random.Random()
        self.recipe_store = recipe_store or RecipeStore()
        self.preference_store = preference_store or PreferenceStore()
        self.ranker = ranker or RecipeRanker(
            recipe_store=self.recipe_store,
            preference_store=self.preference_store,
            rng=self.rng,
        )
        self.meal_plan_store = meal_plan_store or MealPlanStore()
        self.saved_plan_store = saved_plan_store or SavedMealPlanStore()

    def generate(self, user_id: str, start_date: date, end_date: date) -> SavedMealPlan:
        try:
            plan = self.saved_plan_store.create(
                user_id=user_id,
                name=f"Meal Plan: {start_date.isoformat()} to {end_date.isoformat()}",
                description=config.DEFAULT_SAVED_PLAN_DESCRIPTION,
                start_date=start_date,
                end_date=end_date,
            )
            preferences = self.preference_store.get(user_id)
            pool = self._candidate_pool(user_id)
        except StorageError as e:
            raise MealPlanGenerationError(str(e)) from e

        meal_types = meal_types_for(snack_count(preferences))
        logger.info(
            "Generating meal plan",
            extra={
                "user_id": user_id,
                "plan_id": plan.id,
                "start": start_date.isoformat(),
                "end": end_date.isoformat(),
                "pool_size": len(pool),
                "meal_types": meal_types,
            },
        )

        try:
            removed = self.meal_plan_store.delete_range(user_id, start_date, end_date)
            logger.debug("Cleared live entries", extra={"user_id": user_id, "count": removed})
        except StorageError:
            logger.exception("Failed to clear existing meal plan entries, continuing", extra={"user_id": user_id})

        filled = 0
        for day in iter_dates(start_date, end_date):
            for meal_type in meal_types:
                if not pool:
                    logger.debug("Empty recipe pool, skipping slot", extra={"date": day.isoformat(), "meal_type": meal_type})
                    continue

                shuffled = list(pool)
                self.rng.shuffle(shuffled)
                recipe = shuffled[0]

                self._write_slot(user_id, plan, day, meal_type, recipe)
                filled += 1

                if len(pool) > config.MIN_ROTATION_SIZE:
                    pool.remove(recipe)

        logger.info("Meal plan generated", extra={"user_id": user_id, "plan_id": plan.id, "slots_filled": filled})
        return plan

    def _candidate_pool(self, user_id: str) -> list[Recipe]:
        pool = list(self.ranker.rank(user_id))
        if len(pool) < config.MIN_POOL_SIZE:
            extra = self.recipe_store.random_public(
                config.POOL_TOP_UP_LIMIT,
                rng=self.rng,
                exclude_ids={r.id for r in pool},
            )
            logger.debug("Topped up recipe pool", extra={"user_id": user_id, "added": len(extra)})
            pool.extend(extra)
        return pool

    def _write_slot(self, user_id: str, plan: SavedMealPlan, day: date, meal_type: str, recipe: Recipe) -> None:
        macros = macro_snapshot(recipe)
        try:
            with storage_errors("write meal plan slot"):
                self.saved_plan_store.add_entry(plan, {
                    "date": day,
                    "meal_type": meal_type,
                    "recipe_id": recipe.id,
                    **macros,
                })
                self.meal_plan_store.upsert(user_id, {
                    "date": day,
                    "meal_type": meal_type,
                    "recipe_id": recipe.id,
                    "custom_meal_name": recipe.title,
                    **macros,
                }, commit=False)
                db.session.commit()
        except StorageError as e:
            db.session.rollback()
            logger.error(
                "Failed to write meal plan slot",
                extra={"user_id": user_id, "plan_id": plan.id, "date": day.isoformat(), "meal_type": meal_type},
            )
            raise MealPlanGenerationError(f"Failed to write {meal_type} on {day.isoformat()}: {e}") from e
