"""Tests for shop listing, management, the approval workflow and images."""
from __future__ import annotations

from io import BytesIO

from happyinline.extensions import db
from happyinline.models import Booking, Shop, ShopReview, ShopService, ShopStaff


def test_create_shop_makes_creator_admin(app, client, make_profile, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")

    response = client.post(
        "/shops",
        json={"name": "Sharp Edges", "city": "Newark", "phone": "555-0101"},
        headers=auth_headers(owner_id),
    )

    assert response.status_code == 201
    shop = response.json["shop"]
    assert shop["status"] == "draft"
    assert shop["is_open"] is True
    with app.app_context():
        member = ShopStaff.query.filter_by(shop_id=shop["id"], user_id=owner_id).one()
        assert member.role == "admin"

    mine = client.get("/shops/mine", headers=auth_headers(owner_id))
    assert [s["my_role"] for s in mine.json["shops"]] == ["admin"]


def test_create_shop_requires_name(client, make_profile, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")

    response = client.post("/shops", json={"city": "Newark"}, headers=auth_headers(owner_id))

    assert response.status_code == 400


def test_list_shops_filters_and_orders_by_rating(client, make_profile, make_shop) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    make_shop(owner_id, name="Low Fade", city="Newark", rating=3.5)
    make_shop(owner_id, name="Top Fade", city="Newark", rating=4.9)
    make_shop(owner_id, name="Elsewhere", city="Trenton", rating=5.0)
    make_shop(owner_id, name="Closed For Good", city="Newark", rating=4.0, is_active=False)

    response = client.get("/shops?city=newark")
    assert [s["name"] for s in response.json["shops"]] == ["Top Fade", "Low Fade"]

    response = client.get("/shops?min_rating=4.5")
    assert [s["name"] for s in response.json["shops"]] == ["Elsewhere", "Top Fade"]

    response = client.get("/shops?search=fade&min_rating=4")
    assert [s["name"] for s in response.json["shops"]] == ["Top Fade"]

    assert client.get("/shops?min_rating=high").status_code == 400


def test_shop_details_include_staff_and_role(client, make_profile, make_shop, add_staff, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    barber_id = make_profile("barber@example.com")
    shop_id = make_shop(owner_id)
    add_staff(shop_id, barber_id)

    response = client.get(f"/shops/{shop_id}", headers=auth_headers(barber_id))

    assert response.status_code == 200
    assert len(response.json["shop"]["staff"]) == 2
    assert response.json["shop"]["my_role"] == "barber"
    assert client.get("/shops/999").status_code == 404


def test_update_shop_requires_manager(client, make_profile, make_shop, add_staff, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    barber_id = make_profile("barber@example.com")
    shop_id = make_shop(owner_id)
    add_staff(shop_id, barber_id)

    forbidden = client.put(f"/shops/{shop_id}", json={"name": "Mine Now"}, headers=auth_headers(barber_id))
    assert forbidden.status_code == 403

    ok = client.put(f"/shops/{shop_id}", json={"city": "Hoboken"}, headers=auth_headers(owner_id))
    assert ok.status_code == 200
    assert ok.json["shop"]["city"] == "Hoboken"


def test_toggle_status_flips_manual_closure(client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    shop_id = make_shop(owner_id)

    closed = client.post(f"/shops/{shop_id}/toggle-status", headers=auth_headers(owner_id))
    assert closed.json["is_manually_closed"] is True
    assert client.get(f"/shops/{shop_id}/open").json["is_open"] is False

    reopened = client.post(f"/shops/{shop_id}/toggle-status", headers=auth_headers(owner_id))
    assert reopened.json["is_open"] is True


def test_delete_shop_cascades(app, client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    customer_id = make_profile("cust@example.com")
    shop_id = make_shop(owner_id)
    with app.app_context():
        db.session.add(ShopReview(shop_id=shop_id, customer_id=customer_id, rating=5))
        db.session.add(ShopService(shop_id=shop_id, custom_name="Trim", custom_price_cents=1000))
        db.session.commit()

    response = client.delete(f"/shops/{shop_id}", headers=auth_headers(owner_id))

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Shop, shop_id) is None
        assert ShopStaff.query.count() == 0
        assert ShopReview.query.count() == 0
        assert ShopService.query.count() == 0
        assert Booking.query.count() == 0


def test_delete_shop_forbidden_for_manager(client, make_profile, make_shop, add_staff, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    manager_id = make_profile("manager@example.com")
    shop_id = make_shop(owner_id)
    add_staff(shop_id, manager_id, role="manager")

    response = client.delete(f"/shops/{shop_id}", headers=auth_headers(manager_id))

    assert response.status_code == 403


def test_review_workflow(client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    admin_id = make_profile("root@example.com", role="super_admin")
    shop_id = make_shop(owner_id, status="draft")

    submitted = client.post(f"/shops/{shop_id}/submit-review", headers=auth_headers(owner_id))
    assert submitted.json["shop"]["status"] == "pending_review"

    again = client.post(f"/shops/{shop_id}/submit-review", headers=auth_headers(owner_id))
    assert again.status_code == 409

    not_admin = client.put(
        f"/admin/shops/{shop_id}/review", json={"action": "approve"}, headers=auth_headers(owner_id)
    )
    assert not_admin.status_code == 403

    no_reason = client.put(
        f"/admin/shops/{shop_id}/review", json={"action": "reject"}, headers=auth_headers(admin_id)
    )
    assert no_reason.status_code == 400

    rejected = client.put(
        f"/admin/shops/{shop_id}/review",
        json={"action": "reject", "reason": "Missing license photo"},
        headers=auth_headers(admin_id),
    )
    assert rejected.json["shop"]["status"] == "rejected"
    assert rejected.json["shop"]["rejection_reason"] == "Missing license photo"

    client.post(f"/shops/{shop_id}/submit-review", headers=auth_headers(owner_id))
    pending = client.get("/admin/shops?status=pending_review", headers=auth_headers(admin_id))
    assert [s["id"] for s in pending.json["shops"]] == [shop_id]

    approved = client.put(
        f"/admin/shops/{shop_id}/review", json={"action": "approve"}, headers=auth_headers(admin_id)
    )
    assert approved.json["shop"]["status"] == "approved"
    assert approved.json["shop"]["rejection_reason"] is None


def test_signup_deep_link(client, make_profile, make_shop) -> None:
    shop_id = make_shop(make_profile("owner@example.com", role="owner"))

    response = client.get(f"/shops/{shop_id}/signup-link")

    assert response.json["deep_link"] == f"happyinline://signup/shop/{shop_id}"


def test_upload_and_serve_image(client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    shop_id = make_shop(owner_id)
    png = b"\x89PNG\r\n\x1a\nfake-image-bytes"

    upload = client.post(
        f"/shops/{shop_id}/images",
        data={"image": (BytesIO(png), "logo.png", "image/png"), "image_type": "logo"},
        content_type="multipart/form-data",
        headers=auth_headers(owner_id),
    )

    assert upload.status_code == 201
    image = upload.json["image"]
    served = client.get(image["url"])
    assert served.status_code == 200
    assert served.data == png
    assert served.mimetype == "image/png"

    listing = client.get(f"/shops/{shop_id}/images")
    assert [i["image_type"] for i in listing.json["images"]] == ["logo"]


def test_upload_rejects_non_images(client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    shop_id = make_shop(owner_id)

    response = client.post(
        f"/shops/{shop_id}/images",
        data={"image": (BytesIO(b"%PDF-1.4"), "menu.pdf", "application/pdf")},
        content_type="multipart/form-data",
        headers=auth_headers(owner_id),
    )

    assert response.status_code == 400
