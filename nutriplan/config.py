import os
import secrets
import sys

# Flask secret key, used for session signing and CSRF token generation.
# Set SECRET_KEY in the environment for production; a random key is
# generated on startup as a fallback (sessions won't survive restarts).
SECRET_KEY = os.environ.get("SECRET_KEY", secrets.token_hex(32))


# Check if we're running in a test environment
def _is_testing():
    """Check if code is running under pytest."""
    return "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ


# Relational store. Tests always get a private in-memory SQLite database.
DATABASE_URL = (
    "sqlite:///:memory:"
    if _is_testing()
    else os.environ.get("DATABASE_URL", "sqlite:///nutriplan.db")
)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Meal plan generation is write-heavy (two rows per slot), so it gets its own limit.
GENERATE_RATE_LIMIT = os.environ.get("GENERATE_RATE_LIMIT", "10 per minute")

SEED_RECIPES_FILE = os.environ.get("SEED_RECIPES_FILE", "data/seed_recipes.json")

# Owner of seed content
SYSTEM_USER_ID = "system"

# Suggested recipes
SUGGESTION_LIMIT = 8
DIETARY_MATCH_LIMIT = 5
ERROR_FALLBACK_LIMIT = 4

# Meal plan generation
BASE_MEAL_TYPES = ["breakfast", "lunch", "dinner"]
SNACK_MEAL_TYPE = "snack"
MAX_SNACK_SLOTS = 3
MIN_POOL_SIZE = 5          # below this the ranked pool is topped up with random recipes
POOL_TOP_UP_LIMIT = 10
MIN_ROTATION_SIZE = 3      # selections are only removed while the pool is larger than this

DEFAULT_SAVED_PLAN_DESCRIPTION = "Generated meal plan based on your preferences and available recipes"
