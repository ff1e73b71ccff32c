import json
import random
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import func, select

from nutriplan import config
from nutriplan.models import Recipe, RecipeTag, User, db
from nutriplan.recipes import (
    RecipeLoadError,
    RecipeStore,
    delete_system_recipes,
    load_seed_recipes,
    recipe_fields_from_dict,
    seed_recipes,
)
from tests.conftest import TEST_USER_ID, create_test_recipe

SEED_FILE = Path(__file__).parent.parent / "data" / "seed_recipes.json"


class TestRecipeFieldsFromDict:
    def test_maps_camel_case_to_columns(self):
        fields = recipe_fields_from_dict({
            "title": "  Oat Bowl ",
            "prepTime": 5,
            "cookTime": 0,
            "calories": 320.6,
            "imageUrl": "https://example.com/oats.jpg",
            "isPublic": 1,
            "tags": ["breakfast"],
        })

        assert fields == {
            "title": "Oat Bowl",
            "prep_time": 5,
            "cook_time": 0,
            "calories": 321,
            "image_url": "https://example.com/oats.jpg",
            "is_public": True,
            "tags": ["breakfast"],
        }

    def test_instruction_list_is_joined(self):
        fields = recipe_fields_from_dict({"title": "Toast", "instructions": ["Toast bread", "Butter it"]})
        assert fields["instructions"] == "Toast bread\nButter it"

    def test_null_macros_are_kept(self):
        assert recipe_fields_from_dict({"title": "Mystery", "calories": None})["calories"] is None

    @pytest.mark.parametrize("payload,message", [
        ({}, "Missing required fields: title"),
        ({"title": "   "}, "Missing required fields: title"),
        ({"title": "Soup", "calories": -5}, "calories must be a non-negative number"),
        ({"title": "Soup", "protein": "lots"}, "protein must be a non-negative number"),
        ({"title": "Soup", "servings": True}, "servings must be a non-negative number"),
        ({"title": "Soup", "tags": "vegan"}, "tags must be a list"),
        ({"title": "Soup", "ingredients": "water"}, "ingredients must be a list"),
    ])
    def test_validation_errors(self, payload, message):
        with pytest.raises(ValueError, match=message):
            recipe_fields_from_dict(payload)


class TestLoadSeedRecipes:
    def test_bundled_seed_file(self):
        recipes = load_seed_recipes(SEED_FILE)

        assert len(recipes) == 8
        titles = {r["title"] for r in recipes}
        assert "Vegan Protein Stir-Fry" in titles
        assert "Power Protein Smoothie" in titles

    def test_missing_file(self, tmp_path):
        with pytest.raises(RecipeLoadError, match="not found"):
            load_seed_recipes(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(RecipeLoadError, match="Invalid JSON"):
            load_seed_recipes(path)

    def test_missing_recipes_key(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"items": []}))
        with pytest.raises(RecipeLoadError, match="'recipes' key"):
            load_seed_recipes(path)


class TestSeedRecipes:
    def test_seeds_public_system_recipes(self, app_ctx):
        created = seed_recipes(SEED_FILE)

        assert created == 8
        assert db.session.get(User, config.SYSTEM_USER_ID) is not None
        recipes = list(db.session.scalars(select(Recipe)))
        assert len(recipes) == 8
        assert all(r.is_public and r.user_id == config.SYSTEM_USER_ID for r in recipes)

        stir_fry = next(r for r in recipes if r.title == "Vegan Protein Stir-Fry")
        assert stir_fry.tags == ["vegan", "plant-based", "gluten-free", "dairy-free"]
        assert (stir_fry.calories, stir_fry.protein, stir_fry.carbs, stir_fry.fat) == (380, 20, 45, 12)

    def test_seeding_twice_is_a_no_op(self, app_ctx):
        seed_recipes(SEED_FILE)

        assert seed_recipes(SEED_FILE) == 0
        assert db.session.scalar(select(func.count()).select_from(Recipe)) == 8

    def test_reset_then_reseed(self, app_ctx):
        seed_recipes(SEED_FILE)

        assert delete_system_recipes() == 8
        assert db.session.scalar(select(func.count()).select_from(RecipeTag)) == 0
        assert seed_recipes(SEED_FILE) == 8

    def test_user_recipes_do_not_block_seeding(self, app_ctx):
        create_test_recipe("My Soup", user_id=TEST_USER_ID)

        assert seed_recipes(SEED_FILE) == 8


class TestRecipeTags:
    def test_tags_are_deduplicated_in_order(self, app_ctx):
        recipe = create_test_recipe("Bowl", tags=["vegan", " quick ", "vegan", "", "quick"])
        assert recipe.tags == ["vegan", "quick"]

    def test_replacing_tags_removes_old_rows(self, app_ctx):
        recipe = create_test_recipe("Bowl", tags=["vegan", "quick"])
        recipe.tags = ["keto"]
        db.session.commit()

        assert db.session.scalars(select(RecipeTag.name)).all() == ["keto"]


class TestRecipeStore:
    def test_list_public_newest_first(self, app_ctx):
        create_test_recipe("Old", created_minutes=1)
        create_test_recipe("New", created_minutes=5)
        create_test_recipe("Mine", user_id=TEST_USER_ID, is_public=False, created_minutes=9)

        assert [r.title for r in RecipeStore().list_public()] == ["New", "Old"]

    def test_list_public_search_and_tag(self, app_ctx):
        create_test_recipe("Chicken Curry", tags=["dinner"])
        create_test_recipe("Chicken Wrap", tags=["lunch"])
        create_test_recipe("Tofu Curry", tags=["dinner", "vegan"])

        store = RecipeStore()
        assert {r.title for r in store.list_public(search="curry")} == {"Chicken Curry", "Tofu Curry"}
        assert [r.title for r in store.list_public(search="chicken", tag="dinner")] == ["Chicken Curry"]

    def test_list_for_owner_includes_private(self, app_ctx):
        create_test_recipe("Secret", user_id=TEST_USER_ID, is_public=False)
        create_test_recipe("Shared", user_id=TEST_USER_ID, is_public=True)
        create_test_recipe("Someone Else", user_id="user-2")

        assert {r.title for r in RecipeStore().list_for_owner(TEST_USER_ID)} == {"Secret", "Shared"}

    def test_random_public_excludes_ids(self, app_ctx):
        recipes = [create_test_recipe(f"Recipe {i}") for i in range(6)]
        excluded = {recipes[0].id, recipes[1].id}

        results = RecipeStore().random_public(10, rng=random.Random(1), exclude_ids=excluded)

        assert len(results) == 4
        assert not excluded & {r.id for r in results}

    def test_random_public_respects_limit(self, app_ctx):
        for i in range(6):
            create_test_recipe(f"Recipe {i}")

        assert len(RecipeStore().random_public(2, rng=random.Random(1))) == 2
        assert RecipeStore().random_public(0) == []

    def test_create_sets_owner_and_defaults_private(self, app_ctx):
        recipe = RecipeStore().create(TEST_USER_ID, {"title": "Porridge", "calories": 250})

        assert recipe.id is not None
        assert recipe.user_id == TEST_USER_ID
        assert recipe.is_public is False

    def test_visibility(self, app_ctx):
        private = create_test_recipe("Secret", user_id=TEST_USER_ID, is_public=False)
        public = create_test_recipe("Shared", user_id="user-2", is_public=True)

        assert private.is_visible_to(TEST_USER_ID)
        assert not private.is_visible_to("user-2")
        assert public.is_visible_to(TEST_USER_ID)

    def test_update_applies_partial_payload(self, app_ctx):
        recipe = create_test_recipe("Bowl", user_id=TEST_USER_ID, calories=500, tags=["lunch"])

        RecipeStore().update(recipe, {"calories": 420, "isPublic": False})

        assert recipe.title == "Bowl"
        assert recipe.calories == 420
        assert recipe.is_public is False
        assert recipe.tags == ["lunch"]

    def test_update_replaces_tags(self, app_ctx):
        recipe = create_test_recipe("Bowl", user_id=TEST_USER_ID, tags=["lunch", "quick"])

        RecipeStore().update(recipe, {"tags": ["dinner", "vegan"]})

        assert recipe.tags == ["dinner", "vegan"]
        assert db.session.scalar(select(func.count()).select_from(RecipeTag)) == 2

    def test_update_refreshes_updated_at(self, app_ctx):
        recipe = create_test_recipe("Bowl", user_id=TEST_USER_ID)
        recipe.updated_at = datetime(2020, 1, 1, tzinfo=timezone.utc)
        db.session.commit()

        RecipeStore().update(recipe, {"title": "New Bowl"})

        assert not recipe.to_dict()["updatedAt"].startswith("2020-")

    def test_update_rejects_invalid_fields(self, app_ctx):
        recipe = create_test_recipe("Bowl", user_id=TEST_USER_ID, calories=500)

        with pytest.raises(ValueError, match="calories must be a non-negative number"):
            RecipeStore().update(recipe, {"title": "Changed", "calories": -1})

        assert recipe.title == "Bowl"
        assert recipe.calories == 500

    def test_recent_prefers_own_recipes(self, app_ctx):
        for minutes in (1, 2, 3, 4):
            create_test_recipe(f"Mine {minutes}", user_id=TEST_USER_ID, is_public=False, created_minutes=minutes)
        create_test_recipe("Public", created_minutes=9)

        assert [r.title for r in RecipeStore().recent(TEST_USER_ID)] == ["Mine 4", "Mine 3", "Mine 2"]

    def test_recent_tops_up_with_public_recipes_of_others(self, app_ctx):
        create_test_recipe("Mine", user_id=TEST_USER_ID, created_minutes=1)
        create_test_recipe("Their Private", user_id="user-2", is_public=False, created_minutes=8)
        create_test_recipe("Public A", created_minutes=5)
        create_test_recipe("Public B", created_minutes=7)

        assert [r.title for r in RecipeStore().recent(TEST_USER_ID)] == ["Mine", "Public B", "Public A"]


class TestPartialRecipeFields:
    def test_partial_payload_omits_title(self):
        assert recipe_fields_from_dict({"fat": 12.4}, partial=True) == {"fat": 12}

    def test_partial_payload_still_rejects_blank_title(self):
        with pytest.raises(ValueError, match="Missing required fields: title"):
            recipe_fields_from_dict({"title": ""}, partial=True)
