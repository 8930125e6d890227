"""Tests for registration, password login, email codes and the profile endpoints."""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

from happyinline.extensions import db
from happyinline.models import EmailOTP, Profile
from happyinline.routes import get_role_display_name


def test_register_and_login(client) -> None:
    response = client.post(
        "/auth/register",
        json={"name": "Dana", "email": "Dana@Example.com", "password": "s3cret-pass"},
    )

    assert response.status_code == 201
    assert response.json["user"]["email"] == "dana@example.com"
    assert response.json["user"]["role"] == "customer"
    assert response.json["token"]

    login = client.post("/auth/login", json={"email": "dana@example.com", "password": "s3cret-pass"})
    assert login.status_code == 200
    token = login.json["token"]

    me = client.get("/profile/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json["profile"]["role_display"] == "Customer"


def test_register_duplicate_email(client) -> None:
    payload = {"email": "dup@example.com", "password": "password123"}
    client.post("/auth/register", json=payload)

    response = client.post("/auth/register", json=payload)

    assert response.status_code == 409
    assert response.json["error"] == "conflict"


def test_register_rejects_privileged_role(client) -> None:
    response = client.post(
        "/auth/register",
        json={"email": "boss@example.com", "password": "password123", "role": "super_admin"},
    )

    assert response.status_code == 400
    assert response.json["error"] == "invalid_role"


def test_login_wrong_password(client) -> None:
    client.post("/auth/register", json={"email": "pat@example.com", "password": "password123"})

    response = client.post("/auth/login", json={"email": "pat@example.com", "password": "nope-nope"})

    assert response.status_code == 401
    assert response.json["error"] == "unauthorized"


def test_email_code_sign_in_creates_profile(app, client) -> None:
    with patch("happyinline.routes.send_otp_email") as send:
        response = client.post("/auth/otp", json={"email": "new@example.com"})

    assert response.status_code == 200
    email, code = send.call_args.args
    assert email == "new@example.com"
    assert len(code) == 6 and code.isdigit()

    verify = client.post("/auth/otp/verify", json={"email": "new@example.com", "code": code})
    assert verify.status_code == 200
    assert verify.json["is_new_user"] is True

    # Codes are single use.
    again = client.post("/auth/otp/verify", json={"email": "new@example.com", "code": code})
    assert again.status_code == 401

    with app.app_context():
        assert Profile.query.filter_by(email="new@example.com").one().role == "customer"


def test_email_code_expired(app, client) -> None:
    with patch("happyinline.routes.send_otp_email") as send:
        client.post("/auth/otp", json={"email": "late@example.com"})
    code = send.call_args.args[1]

    with app.app_context():
        otp = EmailOTP.query.filter_by(email="late@example.com").one()
        otp.expires_at = otp.expires_at - timedelta(hours=1)
        db.session.commit()

    response = client.post("/auth/otp/verify", json={"email": "late@example.com", "code": code})

    assert response.status_code == 401


def test_profile_requires_token(client) -> None:
    response = client.get("/profile/me", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401


def test_update_profile(client, make_profile, auth_headers) -> None:
    profile_id = make_profile("me@example.com")

    response = client.put(
        "/profile/me",
        json={"name": "Morgan", "phone": "555-0100"},
        headers=auth_headers(profile_id),
    )

    assert response.status_code == 200
    assert response.json["profile"]["name"] == "Morgan"
    assert response.json["profile"]["phone"] == "555-0100"


def test_role_display_names() -> None:
    assert get_role_display_name("barber") == "Staff"
    assert get_role_display_name("super_admin") == "Super Admin"
    assert get_role_display_name("owner") == "Owner"
    assert get_role_display_name(None) == "Customer"


def test_register_through_shop_signup_link(client, make_profile, make_shop) -> None:
    shop_id = make_shop(make_profile("owner@example.com", role="owner"))

    response = client.post(
        "/auth/register",
        json={"email": "walkin@example.com", "password": "password123", "shop_id": shop_id},
    )

    assert response.status_code == 201
    assert response.json["user"]["exclusive_shop_id"] == shop_id

    unknown = client.post(
        "/auth/register",
        json={"email": "lost@example.com", "password": "password123", "shop_id": 999},
    )
    assert unknown.status_code == 404
