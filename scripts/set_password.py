"""Utility to create or update a profile's password for local development."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure the project root is on sys.path so ``happyinline`` imports when run directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from happyinline import create_app
from happyinline.extensions import db
from happyinline.models import AuthAccount, Profile

ROLES = ["customer", "owner", "admin", "super_admin"]


def set_password(email: str, password: str, role: str | None = None) -> None:
    app = create_app()
    email = email.strip().lower()

    with app.app_context():
        profile = Profile.query.filter_by(email=email).first()
        if profile is None:
            profile = Profile(email=email, role=role or "customer")
            db.session.add(profile)
            db.session.flush()
            print(f"Created profile {email} ({profile.role})")
        elif role and profile.role != role:
            print(f"Updating role from '{profile.role}' to '{role}'")
            profile.role = role

        account = AuthAccount.query.filter_by(profile_id=profile.profile_id).first()
        if account is None:
            account = AuthAccount(profile_id=profile.profile_id)
            db.session.add(account)

        account.password_hash = generate_password_hash(password)
        db.session.commit()
        print(f"Password for '{email}' has been set.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Set a profile password for local testing.")
    parser.add_argument("email", help="Profile email address")
    parser.add_argument("password", help="Plain-text password to hash and store")
    parser.add_argument("--role", choices=ROLES, help="Also set the profile role")
    args = parser.parse_args()
    set_password(args.email, args.password, args.role)


if __name__ == "__main__":
    main()
