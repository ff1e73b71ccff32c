import logging
import random

from nutriplan import config
from nutriplan.models import Recipe
from nutriplan.preferences import (
    GoalStrategy,
    PreferenceStore,
    goal_strategy,
    normalize_goals,
    restriction_tags,
)
from nutriplan.recipes import RecipeStore
from nutriplan.storage import StorageError

logger = logging.getLogger(__name__)


class RecipeRanker:
    """Suggest up to eight public recipes for a user.

    Three passes, concatenated in priority order:
      1. dietary matches: recipes tagged with one of the user's restrictions
      2. goal matches: lowest calorie (weight loss) or highest protein (muscle gain)
      3. random filler
    A recipe appears at most once. Users without preferences get random
    recipes only. Storage failures degrade to a smaller random list, then to
    an empty one; this method never raises StorageError.
    """

    def __init__(
        self,
        recipe_store: RecipeStore | None = None,
        preference_store: PreferenceStore | None = None,
        rng: random.Random | None = None,
        limit: int = config.SUGGESTION_LIMIT,
    ):
        self.recipe_store = recipe_store or RecipeStore()
        self.preference_store = preference_store or PreferenceStore()
        self.rng = rng or random.Random()
        self.limit = limit

    def rank(self, user_id: str) -> list[Recipe]:
        try:
            results = self._rank(user_id)
        except StorageError:
            logger.exception("Error generating suggested recipes", extra={"user_id": user_id})
            return self._error_fallback(user_id)

        logger.info("Suggested recipes ranked", extra={"user_id": user_id, "count": len(results)})
        return results

    def _rank(self, user_id: str) -> list[Recipe]:
        preferences = self.preference_store.get(user_id)
        if preferences is None:
            logger.debug("No preferences, using random suggestions", extra={"user_id": user_id})
            return self.recipe_store.random_public(self.limit, rng=self.rng)

        results: list[Recipe] = []

        tags = restriction_tags(preferences.dietary_restrictions)
        if tags:
            logger.debug("Dietary pass", extra={"user_id": user_id, "tags": sorted(tags)})
            results.extend(self.recipe_store.with_any_tag(tags, config.DIETARY_MATCH_LIMIT))

        strategy = goal_strategy(normalize_goals(preferences.goals))
        if strategy is not None and len(results) < self.limit:
            logger.debug("Goal pass", extra={"user_id": user_id, "strategy": strategy.value})
            results.extend(self._goal_matches(strategy, results))

        if len(results) < self.limit:
            results.extend(self.recipe_store.random_public(
                self.limit - len(results), rng=self.rng, exclude_ids=_ids(results)
            ))

        return _dedupe(results)[: self.limit]

    def _goal_matches(self, strategy: GoalStrategy, selected: list[Recipe]) -> list[Recipe]:
        remaining = self.limit - len(selected)
        if strategy is GoalStrategy.LOWEST_CALORIE:
            return self.recipe_store.lowest_calorie(remaining, exclude_ids=_ids(selected))
        return self.recipe_store.highest_protein(remaining, exclude_ids=_ids(selected))

    def _error_fallback(self, user_id: str) -> list[Recipe]:
        try:
            return self.recipe_store.random_public(config.ERROR_FALLBACK_LIMIT, rng=self.rng)
        except StorageError:
            logger.exception("Fallback suggestion query failed", extra={"user_id": user_id})
            return []


def _ids(recipes: list[Recipe]) -> set[int]:
    return {r.id for r in recipes}


def _dedupe(recipes: list[Recipe]) -> list[Recipe]:
    seen: set[int] = set()
    unique = []
    for recipe in recipes:
        if recipe.id not in seen:
            seen.add(recipe.id)
            unique.append(recipe)
    return unique
