"""Tests for the service catalog and per-shop service menus."""
from __future__ import annotations

from happyinline.extensions import db
from happyinline.models import Service


def _seed_catalog(app) -> dict[str, int]:
    with app.app_context():
        services = [
            Service(name="Haircut", category="Hair", default_price_cents=3000, default_duration_minutes=30),
            Service(name="Beard Trim", category="Beard", default_price_cents=1500, default_duration_minutes=None),
            Service(name="Fade", category="Hair", default_price_cents=3500, default_duration_minutes=40),
        ]
        db.session.add_all(services)
        db.session.commit()
        return {s.name: s.service_id for s in services}


def test_catalog_ordered_by_category_then_name(app, client) -> None:
    _seed_catalog(app)

    response = client.get("/services")

    assert [s["name"] for s in response.json["services"]] == ["Beard Trim", "Fade", "Haircut"]


def test_add_catalog_service_with_price_override(app, client, make_profile, make_shop, auth_headers) -> None:
    catalog = _seed_catalog(app)
    owner_id = make_profile("owner@example.com", role="owner")
    shop_id = make_shop(owner_id)

    added = client.post(
        f"/shops/{shop_id}/services",
        json={"service_id": catalog["Haircut"], "price": "32.50"},
        headers=auth_headers(owner_id),
    )
    client.post(
        f"/shops/{shop_id}/services",
        json={"service_id": catalog["Beard Trim"]},
        headers=auth_headers(owner_id),
    )

    assert added.status_code == 201
    menu = {s["name"]: s for s in client.get(f"/shops/{shop_id}/services").json["services"]}
    assert menu["Haircut"]["price"] == 32.5
    assert menu["Haircut"]["duration"] == 30
    assert menu["Beard Trim"]["price"] == 15.0
    assert menu["Beard Trim"]["duration"] == 30

    duplicate = client.post(
        f"/shops/{shop_id}/services",
        json={"service_id": catalog["Haircut"]},
        headers=auth_headers(owner_id),
    )
    assert duplicate.status_code == 409


def test_custom_service_lifecycle(client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    shop_id = make_shop(owner_id)

    created = client.post(
        f"/shops/{shop_id}/services/custom",
        json={"name": "Design Lines", "price": 12, "duration": 20},
        headers=auth_headers(owner_id),
    )
    assert created.status_code == 201
    service = created.json["service"]
    assert service["is_custom"] is True
    assert service["category"] == "Custom"
    assert service["price"] == 12.0

    updated = client.put(
        f"/shops/{shop_id}/services/{service['id']}",
        json={"price": "14.00"},
        headers=auth_headers(owner_id),
    )
    assert updated.json["service"]["price"] == 14.0

    removed = client.delete(f"/shops/{shop_id}/services/{service['id']}", headers=auth_headers(owner_id))
    assert removed.status_code == 200
    assert client.get(f"/shops/{shop_id}/services").json["services"] == []


def test_custom_service_rejects_bad_price(client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    shop_id = make_shop(owner_id)

    response = client.post(
        f"/shops/{shop_id}/services/custom",
        json={"name": "Mystery", "price": "cheap"},
        headers=auth_headers(owner_id),
    )

    assert response.status_code == 400


def test_customers_cannot_edit_menu(app, client, make_profile, make_shop, auth_headers) -> None:
    catalog = _seed_catalog(app)
    shop_id = make_shop(make_profile("owner@example.com", role="owner"))
    customer_id = make_profile("cust@example.com")

    response = client.post(
        f"/shops/{shop_id}/services",
        json={"service_id": catalog["Fade"]},
        headers=auth_headers(customer_id),
    )

    assert response.status_code == 403
