"""HTTP routes for subscriptions, payment history, function invocation and Stripe webhooks."""
from __future__ import annotations

from datetime import datetime, timezone

import stripe
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import billing
from .extensions import db
from .functions import FunctionInvocationError, field_of, invoke
from .models import PaymentHistory, Profile, as_utc, utc_now
from .plans import (BILLING_CYCLE_DAYS, PLAN_ORDER,
                    calculate_upgrade_proration, next_billing_date,
                    plan_to_dict)
from .routes import current_profile, error_response, unauthorized

bp_billing = Blueprint("billing", __name__)

WEBHOOK_STATUS_MAP = {
    "active": "active",
    "past_due": "past_due",
    "canceled": "cancelled",
    "unpaid": "unpaid",
    "paused": "paused",
}


def _result_response(result: dict[str, object], success_status: int = 200):
    if result.get("success"):
        return jsonify(result), success_status
    return jsonify(result), 400


def _require_super_admin():
    profile = current_profile()
    if profile is None:
        return None, unauthorized()
    if profile.role != "super_admin":
        return None, error_response("forbidden", "super admin access required", 403)
    return profile, None


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return as_utc(parsed)


@bp_billing.get("/billing/plans")
def list_plans() -> tuple[dict[str, object], int]:
    """
    List subscription plans in upgrade order.
    ---
    tags:
      - Billing
    responses:
      200:
        description: Available plans
    """
    return jsonify({
        "plans": [plan_to_dict(key) for key in PLAN_ORDER],
        "publishable_key": current_app.config.get("STRIPE_PUBLISHABLE_KEY"),
    }), 200


@bp_billing.get("/billing/status")
def subscription_status() -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    status = billing.get_subscription_status(profile.profile_id)
    return jsonify({"subscription": status}), 200


@bp_billing.post("/billing/subscribe")
def subscribe() -> tuple[dict[str, object], int]:
    """Buy a plan with a card collected on the client.
    ---
    tags:
      - Billing
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            plan:
              type: string
              enum: [basic, starter, professional, enterprise, unlimited]
            payment_method_id:
              type: string
            shop_id:
              type: integer
    responses:
      201:
        description: Subscription active
      400:
        description: Plan invalid or payment failed
      402:
        description: Card needs additional authentication (client_secret returned)
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()

    payload = request.get_json(silent=True) or {}
    result = billing.create_subscription(
        profile.profile_id,
        (payload.get("plan") or "").strip().lower(),
        payload.get("payment_method_id"),
        email=payload.get("email"),
        shop_id=payload.get("shop_id"),
    )
    if result.get("requires_action"):
        return jsonify(result), 402
    return _result_response(result, 201)


@bp_billing.get("/billing/upgrade-preview")
def upgrade_preview() -> tuple[dict[str, object], int]:
    """Estimate the prorated charge for moving to a higher plan."""
    profile = current_profile()
    if profile is None:
        return unauthorized()
    if not profile.subscription_plan or profile.subscription_plan == "none":
        return error_response("invalid_payload", "no current plan to upgrade from", 400)

    new_plan = (request.args.get("plan") or "").strip().lower()
    days_used = request.args.get("days_used", type=int)
    if days_used is None:
        start = as_utc(profile.subscription_start_date)
        days_used = (utc_now() - start).days % BILLING_CYCLE_DAYS if start else 0
    if not 0 <= days_used <= BILLING_CYCLE_DAYS:
        return error_response("invalid_parameters", "days_used must be between 0 and 30", 400)

    try:
        proration = calculate_upgrade_proration(profile.subscription_plan, new_plan, days_used)
    except ValueError as exc:
        return error_response("invalid_payload", str(exc), 400)

    return jsonify({
        "from_plan": profile.subscription_plan,
        "to_plan": new_plan,
        "days_remaining": proration["days_remaining"],
        "credit": float(proration["credit"]),
        "charge": float(proration["charge"]),
        "proration_amount": float(proration["proration_amount"]),
    }), 200


@bp_billing.post("/billing/upgrade")
def upgrade() -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    result = billing.upgrade_subscription(profile.profile_id, (payload.get("plan") or "").strip().lower())
    return _result_response(result)


@bp_billing.post("/billing/cancel")
def cancel() -> tuple[dict[str, object], int]:
    """Cancel the subscription, refunding automatically inside the refund window.
    ---
    tags:
      - Billing
    responses:
      200:
        description: Cancelled (refunded true when the refund window was still open)
      400:
        description: Cancellation failed
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    result = billing.cancel_subscription(profile.profile_id, payload.get("reason"))
    return _result_response(result)


@bp_billing.post("/billing/refund")
def refund() -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    result = billing.request_refund(profile.profile_id, payload.get("reason"))
    return _result_response(result)


@bp_billing.get("/billing/history")
def payment_history() -> tuple[dict[str, object], int]:
    profile = current_profile()
    if profile is None:
        return unauthorized()
    limit = min(200, max(1, request.args.get("limit", 50, type=int)))
    return jsonify({"payments": billing.get_payment_history(profile.profile_id, limit)}), 200


@bp_billing.post("/functions/v1/<name>")
def invoke_function(name: str) -> tuple[dict[str, object], int]:
    """Invoke a server-side Stripe function by name.
    ---
    tags:
      - Functions
    parameters:
      - name: name
        in: path
        type: string
        enum:
          - stripe-create-subscription
          - stripe-upgrade-subscription
          - stripe-cancel-subscription
          - stripe-process-refund
    responses:
      200:
        description: Function result
      401:
        description: Authentication required
    """
    profile = current_profile()
    if profile is None:
        return unauthorized()
    try:
        result = invoke(name, request.get_json(silent=True) or {})
    except FunctionInvocationError as exc:
        return jsonify({"error": str(exc)}), exc.status
    return jsonify(result), 200


# --- Admin payment tracking ---

@bp_billing.get("/admin/payments")
def admin_list_payments() -> tuple[dict[str, object], int]:
    """All payments, newest first.
    ---
    tags:
      - Admin
    parameters:
      - name: status
        in: query
        type: string
      - name: payment_type
        in: query
        type: string
      - name: start_date
        in: query
        type: string
      - name: end_date
        in: query
        type: string
      - name: limit
        in: query
        type: integer
        default: 100
    responses:
      200:
        description: Payments
      403:
        description: Super admin access required
    """
    _, error = _require_super_admin()
    if error:
        return error
    try:
        payments = billing.get_all_payments(
            status=request.args.get("status"),
            payment_type=request.args.get("payment_type"),
            start_date=_parse_datetime(request.args.get("start_date")),
            end_date=_parse_datetime(request.args.get("end_date")),
            limit=min(500, max(1, request.args.get("limit", 100, type=int))),
        )
    except ValueError as exc:
        return error_response("invalid_parameters", str(exc), 400)
    return jsonify({"payments": payments}), 200


@bp_billing.get("/admin/payments/stats")
def admin_payment_stats() -> tuple[dict[str, object], int]:
    _, error = _require_super_admin()
    if error:
        return error
    return jsonify(billing.get_payment_stats()), 200


@bp_billing.get("/admin/payments/overview")
def admin_payment_overview() -> tuple[dict[str, object], int]:
    _, error = _require_super_admin()
    if error:
        return error
    return jsonify({"shops": billing.get_admin_payment_overview()}), 200


# --- Webhook ---

def _timestamp(value) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _invoice_subscription_id(invoice) -> str | None:
    subscription = field_of(invoice, "subscription")
    if subscription:
        return subscription if isinstance(subscription, str) else field_of(subscription, "id")
    details = field_of(field_of(invoice, "parent"), "subscription_details")
    return field_of(details, "subscription")


def _subscription_period_end(subscription) -> datetime | None:
    period_end = field_of(subscription, "current_period_end")
    if not period_end:
        items = field_of(field_of(subscription, "items"), "data") or []
        if items:
            period_end = field_of(items[0], "current_period_end")
    return _timestamp(period_end)


def _handle_subscription_updated(subscription) -> None:
    profile = Profile.query.filter_by(stripe_subscription_id=field_of(subscription, "id")).first()
    if profile is None:
        current_app.logger.info("Webhook subscription %s has no matching profile", field_of(subscription, "id"))
        return

    status = WEBHOOK_STATUS_MAP.get(field_of(subscription, "status"))
    # A period-end cancellation still reports "active" until the period closes.
    ending = field_of(subscription, "cancel_at_period_end") or profile.subscription_status in ("cancelled", "refunded")
    if status and not ending:
        profile.subscription_status = status
    period_end = _subscription_period_end(subscription)
    if period_end:
        profile.next_billing_date = period_end
    db.session.commit()


def _handle_subscription_deleted(subscription) -> None:
    profile = Profile.query.filter_by(stripe_subscription_id=field_of(subscription, "id")).first()
    if profile is None:
        return
    # A refund already ended the subscription; keep that status.
    if profile.subscription_status != "refunded":
        profile.subscription_status = "cancelled"
    profile.subscription_end_date = utc_now()
    db.session.commit()


def _handle_invoice(invoice, succeeded: bool) -> None:
    subscription_id = _invoice_subscription_id(invoice)
    profile = Profile.query.filter_by(stripe_subscription_id=subscription_id).first() if subscription_id else None
    if profile is None:
        current_app.logger.info("Webhook invoice %s has no matching profile", field_of(invoice, "id"))
        return

    invoice_id = field_of(invoice, "id")
    if succeeded:
        profile.subscription_status = "active"
        profile.next_billing_date = next_billing_date(utc_now())
        if field_of(invoice, "billing_reason") == "subscription_create":
            # The first charge is recorded when the subscription is created.
            db.session.commit()
            return
    else:
        profile.subscription_status = "past_due"

    if PaymentHistory.query.filter_by(stripe_invoice_id=invoice_id).first():
        current_app.logger.info("Invoice %s already recorded", invoice_id)
        db.session.commit()
        return

    amount = field_of(invoice, "amount_paid" if succeeded else "amount_due") or 0
    billing.record_payment(
        profile.profile_id,
        int(amount),
        "succeeded" if succeeded else "failed",
        "subscription_renewal" if succeeded else "subscription_payment_failed",
        plan_name=profile.subscription_plan,
        description="Subscription renewal" if succeeded else "Subscription payment failed",
        stripe_payment_intent_id=field_of(invoice, "payment_intent")
        if isinstance(field_of(invoice, "payment_intent"), str) else None,
        stripe_invoice_id=invoice_id,
    )
    db.session.commit()


@bp_billing.post("/stripe-webhook")
def stripe_webhook():
    """Stripe webhook endpoint keeping subscriptions in sync.
    ---
    tags:
      - Payments
    parameters:
      - name: Stripe-Signature
        in: header
        required: true
        type: string
    responses:
      200:
        description: Event received
      400:
        description: Invalid payload or signature
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")

    if not webhook_secret:
        current_app.logger.error("Stripe webhook secret not configured - webhooks will not be processed")
        return jsonify({"received": True}), 200

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except ValueError:
        current_app.logger.warning("Invalid webhook payload")
        return jsonify({"error": "invalid_payload"}), 400
    except stripe.SignatureVerificationError:
        current_app.logger.warning("Invalid signature for webhook")
        return jsonify({"error": "invalid_signature"}), 400

    event_type = field_of(event, "type")
    data = field_of(field_of(event, "data"), "object")
    current_app.logger.info("Stripe webhook %s received", event_type)

    try:
        if event_type == "customer.subscription.updated":
            _handle_subscription_updated(data)
        elif event_type == "customer.subscription.deleted":
            _handle_subscription_deleted(data)
        elif event_type == "invoice.payment_succeeded":
            _handle_invoice(data, succeeded=True)
        elif event_type == "invoice.payment_failed":
            _handle_invoice(data, succeeded=False)
    except IntegrityError:
        db.session.rollback()
        current_app.logger.warning("Duplicate webhook delivery for %s", event_type)
    except (SQLAlchemyError, ValueError, TypeError) as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to process webhook %s", event_type, exc_info=exc)

    return jsonify({"received": True}), 200
