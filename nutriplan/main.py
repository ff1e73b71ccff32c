import logging
import os
import uuid
from datetime import date, timedelta
from functools import wraps

from flask import Flask, g, jsonify, request, session
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFProtect, generate_csrf
from sqlalchemy import select

from nutriplan import config
from nutriplan.logging_config import configure_logging
from nutriplan.meal_plans import (
    MealPlanStore,
    SavedMealPlanStore,
    daily_nutrition,
    entry_fields_from_dict,
    parse_date,
)
from nutriplan.models import MACRO_FIELDS, User, db, macro_snapshot
from nutriplan.planner import MealPlanGenerationError, MealPlanGenerator
from nutriplan.preferences import PreferenceStore
from nutriplan.ranking import RecipeRanker
from nutriplan.recipes import RecipeStore, seed_recipes
from nutriplan.storage import StorageError, storage_errors

configure_logging(config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = config.SECRET_KEY
app.config["SQLALCHEMY_DATABASE_URI"] = config.DATABASE_URL
db.init_app(app)
csrf = CSRFProtect(app)
limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[],          # no global limit; apply per-route only
    storage_uri="memory://",
)

# Stores hold no state of their own; the session comes from Flask-SQLAlchemy
_recipes = RecipeStore()
_preferences = PreferenceStore()
_meal_plans = MealPlanStore()
_saved_plans = SavedMealPlanStore()


def init_db() -> None:
    """Create any missing tables."""
    with app.app_context():
        db.create_all()
    logger.info("Database ready", extra={"url": config.DATABASE_URL.split("@")[-1]})


init_db()


@app.cli.command("seed")
def seed_command():
    """Insert the system recipes (no-op if already present)."""
    created = seed_recipes()
    print(f"Seeded {created} recipes")


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def _error(message: str, status: int, error: str | None = None):
    body = {"message": message}
    if error:
        body["error"] = error
    return jsonify(body), status


def login_required(view):
    """Reject requests without a logged-in session; sets g.user_id."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        user_id = session.get("user_id")
        if not user_id:
            return _error("Unauthorized", 401)
        g.user_id = user_id
        return view(*args, **kwargs)
    return wrapped


def _json_body() -> dict | None:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _current_week() -> tuple[date, date]:
    today = date.today()
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(days=6)


@app.errorhandler(StorageError)
def handle_storage_error(e):
    logger.error("Unhandled storage error", extra={"path": request.path, "error": str(e)})
    return _error("Internal server error", 500, error="Storage error")


# ---------------------------------------------------------------------------
# Health, CSRF, auth
# ---------------------------------------------------------------------------

@app.route("/api/health")
def health():
    return jsonify({"status": "ok"})


@app.route("/api/csrf-token")
def csrf_token():
    """Token for the X-CSRFToken header on state-changing requests."""
    return jsonify({"csrf_token": generate_csrf()})


@app.route("/api/login", methods=["POST"])
def login():
    """Log in by email, creating the user on first sight."""
    data = _json_body()
    if data is None:
        return _error("Request body must be valid JSON", 400, error="Invalid JSON")

    email = data.get("email")
    if not isinstance(email, str) or "@" not in email:
        return _error("A valid email is required", 400, error="Validation error")
    email = email.strip().lower()

    with storage_errors("log in"):
        user = db.session.scalar(select(User).where(User.email == email))
        if user is None:
            user = User(
                id=uuid.uuid4().hex,
                email=email,
                first_name=data.get("firstName"),
                last_name=data.get("lastName"),
            )
            db.session.add(user)
            db.session.commit()
            logger.info("User created", extra={"user_id": user.id})

    session.clear()
    session["user_id"] = user.id
    logger.info("User logged in", extra={"user_id": user.id})
    return jsonify(user.to_dict())


@app.route("/api/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"success": True})


@app.route("/api/auth/user")
@login_required
def auth_user():
    user = db.session.get(User, g.user_id)
    if user is None:
        session.clear()
        return _error("Unauthorized", 401)
    return jsonify(user.to_dict())


# ---------------------------------------------------------------------------
# Recipes
# ---------------------------------------------------------------------------

@app.route("/api/recipes", methods=["GET"])
@login_required
def list_recipes():
    """Public recipes, newest first.

    Query params:
        search: case-insensitive substring of the title
        tag: exact tag name
    """
    search = request.args.get("search", "").strip()
    tag = request.args.get("tag", "").strip()
    recipes = _recipes.list_public(search=search, tag=tag)
    return jsonify([r.to_dict() for r in recipes])


@app.route("/api/recipes/mine", methods=["GET"])
@app.route("/api/recipes/my", methods=["GET"])
@login_required
def list_my_recipes():
    return jsonify([r.to_dict() for r in _recipes.list_for_owner(g.user_id)])


@app.route("/api/recipes/recent", methods=["GET"])
@login_required
def recent_recipes():
    return jsonify([r.to_dict() for r in _recipes.recent(g.user_id)])


@app.route("/api/recipes/suggested", methods=["GET"])
@login_required
def suggested_recipes():
    recipes = RecipeRanker(recipe_store=_recipes, preference_store=_preferences).rank(g.user_id)
    return jsonify([r.to_dict() for r in recipes])


@app.route("/api/recipes/<int:recipe_id>", methods=["GET"])
@login_required
def get_recipe(recipe_id: int):
    recipe = _recipes.get(recipe_id)
    # Private recipes of other users look the same as missing ones
    if recipe is None or not recipe.is_visible_to(g.user_id):
        return _error(f"No recipe found with ID '{recipe_id}'", 404, error="Recipe not found")
    return jsonify(recipe.to_dict())


@app.route("/api/recipes", methods=["POST"])
@login_required
def create_recipe():
    data = _json_body()
    if data is None:
        return _error("Request body must be valid JSON", 400, error="Invalid JSON")

    try:
        recipe = _recipes.create(g.user_id, data)
    except ValueError as e:
        return _error(str(e), 400, error="Validation error")

    return jsonify(recipe.to_dict()), 201


@app.route("/api/recipes/<int:recipe_id>", methods=["PATCH"])
@login_required
def update_recipe(recipe_id: int):
    recipe = _recipes.get(recipe_id)
    if recipe is None or not recipe.is_visible_to(g.user_id):
        return _error(f"No recipe found with ID '{recipe_id}'", 404, error="Recipe not found")
    if recipe.user_id != g.user_id:
        return _error("You can only update your own recipes", 403, error="Forbidden")

    data = _json_body()
    if data is None:
        return _error("Request body must be valid JSON", 400, error="Invalid JSON")

    try:
        recipe = _recipes.update(recipe, data)
    except ValueError as e:
        return _error(str(e), 400, error="Validation error")

    return jsonify(recipe.to_dict())


@app.route("/api/recipes/<int:recipe_id>", methods=["DELETE"])
@login_required
def delete_recipe(recipe_id: int):
    recipe = _recipes.get(recipe_id)
    if recipe is None:
        return _error(f"No recipe found with ID '{recipe_id}'", 404, error="Recipe not found")
    if recipe.user_id != g.user_id:
        return _error("You can only delete your own recipes", 403, error="Forbidden")

    _recipes.delete(recipe)
    return jsonify({"success": True})


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

@app.route("/api/preferences", methods=["GET"])
@login_required
def get_preferences():
    preferences = _preferences.get(g.user_id)
    return jsonify(preferences.to_dict() if preferences else {})


@app.route("/api/preferences", methods=["POST"])
@login_required
def save_preferences():
    data = _json_body()
    if data is None:
        return _error("Request body must be valid JSON", 400, error="Invalid JSON")

    try:
        preferences = _preferences.upsert(g.user_id, data)
    except ValueError as e:
        return _error(str(e), 400, error="Validation error")

    return jsonify(preferences.to_dict())


# ---------------------------------------------------------------------------
# Live meal plan calendar
# ---------------------------------------------------------------------------

@app.route("/api/meal-plans", methods=["GET"])
@login_required
def list_meal_plan_entries():
    """Live entries between ?start and ?end (inclusive, default: this Monday to Sunday)."""
    default_start, default_end = _current_week()
    try:
        start = parse_date(request.args["start"], "start") if "start" in request.args else default_start
        end = parse_date(request.args["end"], "end") if "end" in request.args else default_end
    except ValueError as e:
        return _error(str(e), 400, error="Validation error")

    entries = _meal_plans.list_range(g.user_id, start, end)
    return jsonify([e.to_dict() for e in entries])


@app.route("/api/meal-plans/current", methods=["GET"])
@login_required
def current_meal_plan_entries():
    """Live entries from today through the next seven days."""
    today = date.today()
    entries = _meal_plans.list_range(g.user_id, today, today + timedelta(days=7))
    return jsonify([e.to_dict() for e in entries])


@app.route("/api/meal-plans", methods=["POST"])
@login_required
def save_meal_plan_entry():
    """Create or replace the entry for (date, mealType).

    When a recipe is given without macros, the recipe's macros are copied in.
    """
    data = _json_body()
    if data is None:
        return _error("Request body must be valid JSON", 400, error="Invalid JSON")

    try:
        fields = entry_fields_from_dict(data)
    except ValueError as e:
        return _error(str(e), 400, error="Validation error")

    if fields["recipe_id"] is not None:
        recipe = _recipes.get(fields["recipe_id"])
        if recipe is None or not recipe.is_visible_to(g.user_id):
            return _error(f"No recipe found with ID '{fields['recipe_id']}'", 404, error="Recipe not found")
        if all(fields[f] is None for f in MACRO_FIELDS):
            fields.update(macro_snapshot(recipe))

    entry = _meal_plans.upsert(g.user_id, fields)
    return jsonify(entry.to_dict())


@app.route("/api/meal-plans/<int:entry_id>", methods=["DELETE"])
@login_required
def delete_meal_plan_entry(entry_id: int):
    entry = _meal_plans.get(entry_id)
    if entry is None:
        return _error(f"No meal plan entry with ID '{entry_id}'", 404, error="Not found")
    if entry.user_id != g.user_id:
        return _error("You can only delete your own meal plan entries", 403, error="Forbidden")

    _meal_plans.delete(entry)
    return jsonify({"success": True})


@app.route("/api/meal-plans/generate", methods=["POST"])
@limiter.limit(config.GENERATE_RATE_LIMIT)
@login_required
def generate_meal_plan():
    """Generate a plan for {startDate, endDate} and return the new saved plan."""
    data = _json_body() or {}
    try:
        start = parse_date(data.get("startDate"), "startDate")
        end = parse_date(data.get("endDate"), "endDate")
    except ValueError as e:
        return _error(str(e), 400, error="Validation error")

    logger.info(
        "Meal plan generation requested",
        extra={"user_id": g.user_id, "start": start.isoformat(), "end": end.isoformat()},
    )
    try:
        plan = MealPlanGenerator(
            recipe_store=_recipes,
            preference_store=_preferences,
            meal_plan_store=_meal_plans,
            saved_plan_store=_saved_plans,
        ).generate(g.user_id, start, end)
    except MealPlanGenerationError:
        logger.exception("Meal plan generation failed", extra={"user_id": g.user_id})
        return _error("Failed to generate meal plan", 500)

    return jsonify(plan.to_dict())


# ---------------------------------------------------------------------------
# Saved meal plans
# ---------------------------------------------------------------------------

@app.route("/api/meal-plans/saved", methods=["GET"])
@login_required
def list_saved_meal_plans():
    return jsonify([p.to_dict() for p in _saved_plans.list_for_user(g.user_id)])


@app.route("/api/meal-plans/saved", methods=["POST"])
@login_required
def create_saved_meal_plan():
    data = _json_body()
    if data is None:
        return _error("Request body must be valid JSON", 400, error="Invalid JSON")

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return _error("Missing required fields: name", 400, error="Validation error")

    raw_entries = data.get("entries") or []
    if not isinstance(raw_entries, list):
        return _error("entries must be a list", 400, error="Validation error")

    try:
        start = parse_date(data.get("startDate"), "startDate")
        end = parse_date(data.get("endDate"), "endDate")
        entries = [entry_fields_from_dict(e) for e in raw_entries]
    except ValueError as e:
        return _error(str(e), 400, error="Validation error")

    plan = _saved_plans.create(
        user_id=g.user_id,
        name=name.strip(),
        description=data.get("description"),
        start_date=start,
        end_date=end,
        entries=entries,
    )
    return jsonify(plan.to_dict()), 201


def _owned_saved_plan(plan_id: int):
    """Return (plan, None) or (None, error response)."""
    plan = _saved_plans.get(plan_id)
    if plan is None:
        return None, _error(f"No saved meal plan with ID '{plan_id}'", 404, error="Not found")
    if plan.user_id != g.user_id:
        return None, _error("You can only access your own meal plans", 403, error="Forbidden")
    return plan, None


@app.route("/api/meal-plans/saved/<int:plan_id>", methods=["GET"])
@login_required
def get_saved_meal_plan(plan_id: int):
    plan, error = _owned_saved_plan(plan_id)
    if error:
        return error

    entries = _saved_plans.entries(plan.id)
    response = plan.to_dict()
    response["entries"] = [e.to_dict() for e in entries]
    response["dailyTotals"] = daily_nutrition(entries)
    return jsonify(response)


@app.route("/api/meal-plans/saved/<int:plan_id>", methods=["DELETE"])
@login_required
def delete_saved_meal_plan(plan_id: int):
    plan, error = _owned_saved_plan(plan_id)
    if error:
        return error

    _saved_plans.delete(plan)
    return jsonify({"success": True})


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_ENV") != "production"
    app.run(host="0.0.0.0", port=port, debug=debug)
