"""Shared pytest fixtures: an in-memory app, a client and small data factories."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest
from itsdangerous import URLSafeTimedSerializer

# Ensure the project root is available on sys.path so tests can import the package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from happyinline import create_app
from happyinline.extensions import db
from happyinline.models import Profile, Shop, ShopStaff

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SECRET_KEY": "test-secret",
    "STRIPE_SECRET_KEY": "sk_test_dummy",
    "STRIPE_WEBHOOK_SECRET": "whsec_test",
    "ENABLE_PAYMENTS": True,
}


@pytest.fixture
def app():
    flask_app = create_app(dict(TEST_CONFIG))
    with flask_app.app_context():
        db.create_all()

    yield flask_app

    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def _headers(profile_id: int) -> dict[str, str]:
        serializer = URLSafeTimedSerializer(app.config["SECRET_KEY"], salt="auth-token")
        return {"Authorization": f"Bearer {serializer.dumps({'user_id': profile_id})}"}

    return _headers


@pytest.fixture
def make_profile(app):
    def _make(email: str, role: str = "customer", **fields) -> int:
        with app.app_context():
            fields.setdefault("name", email.split("@")[0].title())
            profile = Profile(email=email, role=role, **fields)
            db.session.add(profile)
            db.session.commit()
            return profile.profile_id

    return _make


@pytest.fixture
def make_shop(app):
    def _make(owner_id: int, name: str = "Fresh Cuts", **fields) -> int:
        with app.app_context():
            fields.setdefault("status", "approved")
            shop = Shop(name=name, created_by=owner_id, **fields)
            db.session.add(shop)
            db.session.flush()
            db.session.add(ShopStaff(shop_id=shop.shop_id, user_id=owner_id, role="admin"))
            db.session.commit()
            return shop.shop_id

    return _make


@pytest.fixture
def add_staff(app):
    def _add(shop_id: int, user_id: int, role: str = "barber") -> int:
        with app.app_context():
            member = ShopStaff(shop_id=shop_id, user_id=user_id, role=role)
            db.session.add(member)
            db.session.commit()
            return member.staff_id

    return _add
