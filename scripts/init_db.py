#!/usr/bin/env python3
"""Create database tables and seed the global service catalog."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from happyinline import create_app
from happyinline.extensions import db
from happyinline.models import Service

# (category, name, default price in cents, default minutes)
CATALOG = [
    ("Hair", "Haircut", 3000, 30),
    ("Hair", "Kids Haircut", 2000, 20),
    ("Hair", "Fade", 3500, 40),
    ("Hair", "Hair Coloring", 7500, 90),
    ("Beard", "Beard Trim", 1500, 15),
    ("Beard", "Hot Towel Shave", 3000, 30),
    ("Grooming", "Eyebrow Shaping", 1200, 15),
    ("Grooming", "Facial", 4500, 45),
]


def init_database(seed: bool = True) -> None:
    app = create_app()
    with app.app_context():
        db.create_all()
        print("Database tables initialized")
        if not seed:
            return

        added = 0
        for category, name, price_cents, minutes in CATALOG:
            if Service.query.filter_by(name=name).first() is not None:
                continue
            db.session.add(
                Service(
                    name=name,
                    category=category,
                    default_price_cents=price_cents,
                    default_duration_minutes=minutes,
                )
            )
            added += 1
        db.session.commit()
        print(f"Seeded {added} catalog services")


def main() -> None:
    parser = argparse.ArgumentParser(description="Create tables and seed the service catalog.")
    parser.add_argument("--no-seed", action="store_true", help="Only create tables")
    args = parser.parse_args()
    init_database(seed=not args.no_seed)


if __name__ == "__main__":
    main()
