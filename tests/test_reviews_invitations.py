"""Tests for shop reviews and staff invitations."""
from __future__ import annotations

from datetime import timedelta

from happyinline.extensions import db
from happyinline.models import ShopInvitation, ShopStaff, utc_now


def test_reviews_update_shop_rating(client, make_profile, make_shop, auth_headers) -> None:
    shop_id = make_shop(make_profile("owner@example.com", role="owner"))
    first = make_profile("a@example.com")
    second = make_profile("b@example.com")

    client.post(f"/shops/{shop_id}/reviews", json={"rating": 5, "comment": "Great"}, headers=auth_headers(first))
    response = client.post(f"/shops/{shop_id}/reviews", json={"rating": 4}, headers=auth_headers(second))

    assert response.status_code == 201
    assert response.json["shop_rating"] == 4.5
    assert response.json["total_reviews"] == 2
    reviews = client.get(f"/shops/{shop_id}/reviews").json["reviews"]
    assert sorted(r["rating"] for r in reviews) == [4, 5]


def test_review_rating_out_of_range(client, make_profile, make_shop, auth_headers) -> None:
    shop_id = make_shop(make_profile("owner@example.com", role="owner"))
    customer = make_profile("a@example.com")

    response = client.post(f"/shops/{shop_id}/reviews", json={"rating": 6}, headers=auth_headers(customer))

    assert response.status_code == 400


def _invite(client, auth_headers, shop_id, inviter_id, email="barber@example.com", role="barber"):
    return client.post(
        f"/shops/{shop_id}/invitations",
        json={"email": email, "role": role, "message": "Join us"},
        headers=auth_headers(inviter_id),
    )


def test_accept_invitation_adds_staff(app, client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner", max_licenses=2)
    shop_id = make_shop(owner_id)
    invitee_id = make_profile("barber@example.com")
    invitation_id = _invite(client, auth_headers, shop_id, owner_id).json["invitation"]["id"]

    pending = client.get("/invitations/pending", headers=auth_headers(invitee_id))
    assert [i["id"] for i in pending.json["invitations"]] == [invitation_id]
    assert pending.json["invitations"][0]["shop"]["name"] == "Fresh Cuts"

    response = client.post(f"/invitations/{invitation_id}/accept", headers=auth_headers(invitee_id))

    assert response.status_code == 200
    assert response.json["invitation"]["status"] == "accepted"
    assert response.json["invitation"]["invitee_user_id"] == invitee_id
    assert response.json["staff"]["role"] == "barber"
    assert client.get("/invitations/pending", headers=auth_headers(invitee_id)).json["invitations"] == []


def test_accept_without_licenses_leaves_invitation_pending(app, client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner", max_licenses=0)
    shop_id = make_shop(owner_id)
    invitee_id = make_profile("barber@example.com")
    invitation_id = _invite(client, auth_headers, shop_id, owner_id).json["invitation"]["id"]

    response = client.post(f"/invitations/{invitation_id}/accept", headers=auth_headers(invitee_id))

    assert response.status_code == 403
    with app.app_context():
        assert db.session.get(ShopInvitation, invitation_id).status == "pending"
        assert ShopStaff.query.filter_by(user_id=invitee_id).count() == 0


def test_decline_invitation(client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    shop_id = make_shop(owner_id)
    invitee_id = make_profile("mgr@example.com")
    invitation_id = _invite(client, auth_headers, shop_id, owner_id, email="mgr@example.com", role="manager").json[
        "invitation"
    ]["id"]

    response = client.post(f"/invitations/{invitation_id}/decline", headers=auth_headers(invitee_id))
    assert response.json["invitation"]["status"] == "declined"

    again = client.post(f"/invitations/{invitation_id}/accept", headers=auth_headers(invitee_id))
    assert again.status_code == 409


def test_expired_invitation_is_hidden(app, client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    shop_id = make_shop(owner_id)
    invitee_id = make_profile("late@example.com")
    invitation_id = _invite(client, auth_headers, shop_id, owner_id, email="late@example.com").json[
        "invitation"
    ]["id"]
    with app.app_context():
        db.session.get(ShopInvitation, invitation_id).expires_at = utc_now() - timedelta(days=1)
        db.session.commit()

    assert client.get("/invitations/pending", headers=auth_headers(invitee_id)).json["invitations"] == []
    response = client.post(f"/invitations/{invitation_id}/accept", headers=auth_headers(invitee_id))
    assert response.status_code == 409


def test_invitation_for_someone_else(client, make_profile, make_shop, auth_headers) -> None:
    owner_id = make_profile("owner@example.com", role="owner")
    shop_id = make_shop(owner_id)
    make_profile("barber@example.com")
    intruder = make_profile("intruder@example.com")
    invitation_id = _invite(client, auth_headers, shop_id, owner_id).json["invitation"]["id"]

    response = client.post(f"/invitations/{invitation_id}/accept", headers=auth_headers(intruder))

    assert response.status_code == 404
