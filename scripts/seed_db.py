#!/usr/bin/env python3
"""
Create the database tables and insert the system seed recipes.

Seeding is skipped when system recipes already exist, so the script is safe to
run on every deploy.

Usage:
    python scripts/seed_db.py                          # Seed from SEED_RECIPES_FILE
    python scripts/seed_db.py --file my_recipes.json   # Seed from another file
    python scripts/seed_db.py --reset                  # Replace existing system recipes
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path to import nutriplan modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from nutriplan import config
from nutriplan.main import app
from nutriplan.recipes import RecipeLoadError, delete_system_recipes, seed_recipes
from nutriplan.storage import StorageError


def main():
    parser = argparse.ArgumentParser(description="Seed the recipe database")
    parser.add_argument(
        '--file',
        default=config.SEED_RECIPES_FILE,
        help='Seed recipe JSON file (default: %(default)s)'
    )
    parser.add_argument(
        '--reset',
        action='store_true',
        help='Delete existing system recipes before seeding'
    )
    args = parser.parse_args()

    print("=" * 60)
    print(f"Seeding recipes from: {args.file}")
    print("=" * 60)

    with app.app_context():
        try:
            if args.reset:
                removed = delete_system_recipes()
                print(f"Removed {removed} existing system recipes")
            created = seed_recipes(args.file)
        except (RecipeLoadError, StorageError, ValueError) as e:
            print(f"Error: {e}")
            sys.exit(1)

    if created:
        print(f"Seeded {created} recipes")
    else:
        print("System recipes already present, nothing to do (use --reset to replace)")


if __name__ == "__main__":
    main()
