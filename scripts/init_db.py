#!/usr/bin/env python3
"""Create (or recreate) the booking tables."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the project root is on sys.path so ``bookit`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bookit import create_app
from bookit.extensions import db


def init_database(drop: bool = False) -> None:
    app = create_app()
    with app.app_context():
        if drop:
            db.drop_all()
            print("🗑️  Dropped existing tables")
        db.create_all()
        tables = ", ".join(sorted(db.metadata.tables))
        print(f"✅ Tables ready on {app.config['SQLALCHEMY_DATABASE_URI']}: {tables}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the BookIt database tables.")
    parser.add_argument("--drop", action="store_true", help="Drop every table first (destroys data)")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    init_database(drop=args.drop)
