"""Purge rejected, cancelled, no-show and long-completed appointments."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the project root is on sys.path so ``bookit`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bookit import create_app
from bookit.booking import cleanup_appointments


def cleanup(vendor_id: int | None, days: int | None) -> None:
    app = create_app()
    if days is not None:
        app.config["CLEANUP_COMPLETED_AFTER_DAYS"] = days

    with app.app_context():
        deleted = cleanup_appointments(vendor_id=vendor_id)

    scope = f"vendor {vendor_id}" if vendor_id is not None else "all vendors"
    print(f"🧹 Deleted {deleted} appointments for {scope}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete finished appointments that no longer need to be kept.")
    parser.add_argument("--vendor-id", type=int, help="Only clean up this vendor (default: every vendor)")
    parser.add_argument(
        "--days",
        type=int,
        help="Keep completed appointments newer than this many days (default: CLEANUP_COMPLETED_AFTER_DAYS)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    cleanup(args.vendor_id, args.days)


if __name__ == "__main__":
    main()
