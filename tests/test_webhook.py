"""Tests for the Stripe webhook endpoint."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import stripe

from happyinline import billing
from happyinline.extensions import db
from happyinline.models import PaymentHistory, Profile

CONSTRUCT_EVENT = "happyinline.routes_billing.stripe.Webhook.construct_event"


def _subscriber(make_profile) -> int:
    start = datetime(2026, 3, 1, tzinfo=timezone.utc)
    return make_profile(
        "owner@example.com",
        role="owner",
        subscription_plan="starter",
        subscription_status="active",
        subscription_start_date=start,
        next_billing_date=start + timedelta(days=30),
        monthly_amount_cents=7499,
        stripe_subscription_id="sub_hook",
    )


def _post(client, event):
    with patch(CONSTRUCT_EVENT, return_value=event):
        return client.post("/stripe-webhook", data=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})


def test_invoice_payment_succeeded_records_renewal_once(app, client, make_profile) -> None:
    profile_id = _subscriber(make_profile)
    event = {
        "type": "invoice.payment_succeeded",
        "data": {"object": {
            "id": "in_renew",
            "subscription": "sub_hook",
            "amount_paid": 7499,
            "billing_reason": "subscription_cycle",
            "payment_intent": "pi_renew",
        }},
    }

    first = _post(client, event)
    second = _post(client, event)

    assert first.status_code == 200
    assert second.json == {"received": True}
    with app.app_context():
        payments = PaymentHistory.query.filter_by(user_id=profile_id).all()
        assert len(payments) == 1
        assert payments[0].payment_type == "subscription_renewal"
        assert payments[0].status == "succeeded"
        assert payments[0].amount_cents == 7499
        assert payments[0].stripe_invoice_id == "in_renew"
        assert db.session.get(Profile, profile_id).subscription_status == "active"


def test_first_invoice_is_not_recorded_twice(app, client, make_profile) -> None:
    profile_id = _subscriber(make_profile)
    event = {
        "type": "invoice.payment_succeeded",
        "data": {"object": {
            "id": "in_first",
            "parent": {"subscription_details": {"subscription": "sub_hook"}},
            "amount_paid": 7499,
            "billing_reason": "subscription_create",
        }},
    }

    response = _post(client, event)

    assert response.status_code == 200
    with app.app_context():
        assert PaymentHistory.query.filter_by(user_id=profile_id).count() == 0


def test_invoice_payment_failed_marks_past_due(app, client, make_profile) -> None:
    profile_id = _subscriber(make_profile)
    event = {
        "type": "invoice.payment_failed",
        "data": {"object": {"id": "in_fail", "subscription": "sub_hook", "amount_due": 7499}},
    }

    _post(client, event)

    with app.app_context():
        assert db.session.get(Profile, profile_id).subscription_status == "past_due"
        payment = PaymentHistory.query.filter_by(stripe_invoice_id="in_fail").one()
        assert payment.status == "failed"


def test_subscription_updated_maps_status_and_period_end(app, client, make_profile) -> None:
    profile_id = _subscriber(make_profile)
    period_end = datetime(2026, 5, 1, tzinfo=timezone.utc)
    event = {
        "type": "customer.subscription.updated",
        "data": {"object": {
            "id": "sub_hook",
            "status": "canceled",
            "current_period_end": int(period_end.timestamp()),
        }},
    }

    _post(client, event)

    with app.app_context():
        profile = db.session.get(Profile, profile_id)
        assert profile.subscription_status == "cancelled"
        assert profile.next_billing_date.replace(tzinfo=timezone.utc) == period_end


def test_period_end_cancellation_keeps_cancelled_status(app, client, make_profile) -> None:
    profile_id = _subscriber(make_profile)
    with app.app_context():
        db.session.get(Profile, profile_id).subscription_status = "cancelled"
        db.session.commit()
    period_end = datetime(2026, 4, 1, tzinfo=timezone.utc)
    event = {
        "type": "customer.subscription.updated",
        "data": {"object": {
            "id": "sub_hook",
            "status": "active",
            "cancel_at_period_end": True,
            "current_period_end": int(period_end.timestamp()),
        }},
    }

    _post(client, event)

    with app.app_context():
        profile = db.session.get(Profile, profile_id)
        assert profile.subscription_status == "cancelled"
        assert profile.next_billing_date.replace(tzinfo=timezone.utc) == period_end
        status = billing.get_subscription_status(profile_id, now=datetime(2026, 3, 10, tzinfo=timezone.utc))
        assert status["can_upgrade"] is False


def test_subscription_deleted_ends_access(app, client, make_profile) -> None:
    profile_id = _subscriber(make_profile)
    event = {"type": "customer.subscription.deleted", "data": {"object": {"id": "sub_hook"}}}

    _post(client, event)

    with app.app_context():
        profile = db.session.get(Profile, profile_id)
        assert profile.subscription_status == "cancelled"
        assert profile.subscription_end_date is not None


def test_unknown_subscription_is_acknowledged(client) -> None:
    event = {"type": "customer.subscription.deleted", "data": {"object": {"id": "sub_ghost"}}}

    response = _post(client, event)

    assert response.status_code == 200
    assert response.json == {"received": True}


def test_invalid_signature_rejected(client) -> None:
    error = stripe.SignatureVerificationError("bad signature", "t=1,v1=abc")

    with patch(CONSTRUCT_EVENT, side_effect=error):
        response = client.post("/stripe-webhook", data=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})

    assert response.status_code == 400
    assert response.json == {"error": "invalid_signature"}


def test_missing_webhook_secret_skips_processing(app, client) -> None:
    app.config["STRIPE_WEBHOOK_SECRET"] = None

    with patch(CONSTRUCT_EVENT) as construct:
        response = client.post("/stripe-webhook", data=b"{}")

    assert response.status_code == 200
    construct.assert_not_called()
