"""Subscription orchestration: plan purchase, upgrade, cancellation and refunds.

Every public function returns a result dict instead of raising, so routes can
hand failures straight back to the client:

    {"success": True, ...}  or  {"success": False, "error": "..."}

Stripe work is delegated to the named handlers in ``functions``; this module
owns the bookkeeping on the ``profiles`` row and the payment/event ledgers.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .functions import FunctionInvocationError
from .functions import invoke as invoke_function
from .models import (PaymentHistory, Profile, Shop, ShopStaff,
                     SubscriptionEvent, as_utc, utc_now)
from .plans import (amount_to_cents, get_plan, get_upgrade_options,
                    is_refund_eligible, is_upgrade, next_billing_date,
                    plan_to_dict, refund_days_remaining,
                    refund_eligible_until)


def _failure(message: str, **extra) -> dict[str, object]:
    return {"success": False, "error": message, **extra}


def _load_profile(profile_id: int) -> Profile | None:
    return db.session.get(Profile, profile_id)


def _commit(action: str) -> dict[str, object] | None:
    """Commit the session; return a failure result if the database refused."""
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to save %s", action, exc_info=exc)
        return _failure(f"failed to save {action}")
    return None


def record_payment(
    user_id: int,
    amount_cents: int,
    status: str,
    payment_type: str,
    plan_name: str | None = None,
    description: str | None = None,
    stripe_payment_intent_id: str | None = None,
    stripe_invoice_id: str | None = None,
    stripe_refund_id: str | None = None,
) -> PaymentHistory:
    """Stage a payment_history row on the current session."""
    payment = PaymentHistory(
        user_id=user_id,
        amount_cents=amount_cents,
        status=status,
        payment_type=payment_type,
        plan_name=plan_name,
        description=description,
        stripe_payment_intent_id=stripe_payment_intent_id,
        stripe_invoice_id=stripe_invoice_id,
        stripe_refund_id=stripe_refund_id,
    )
    db.session.add(payment)
    return payment


def record_subscription_event(
    user_id: int,
    event_type: str,
    from_plan: str | None = None,
    to_plan: str | None = None,
    amount_cents: int | None = None,
    details: dict | None = None,
) -> SubscriptionEvent:
    event = SubscriptionEvent(
        user_id=user_id,
        event_type=event_type,
        from_plan=from_plan,
        to_plan=to_plan,
        amount_cents=amount_cents,
        details=details or {},
    )
    db.session.add(event)
    return event


def create_subscription(
    profile_id: int,
    plan_key: str,
    payment_method_id: str,
    email: str | None = None,
    shop_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, object]:
    plan = get_plan(plan_key)
    if plan is None:
        return _failure("Invalid plan selected")
    if not payment_method_id:
        return _failure("A payment method is required")

    profile = _load_profile(profile_id)
    if profile is None:
        return _failure("Profile not found")

    try:
        result = invoke_function(
            "stripe-create-subscription",
            {
                "shopId": shop_id,
                "email": email or profile.email,
                "planName": plan_key,
                "paymentMethodId": payment_method_id,
                "amount": float(plan["amount"]),
            },
        )
    except FunctionInvocationError as exc:
        current_app.logger.warning("Subscription purchase failed for profile %s: %s", profile_id, exc)
        return _failure(str(exc))

    if result.get("requiresAction"):
        return {
            "success": False,
            "requires_action": True,
            "client_secret": result.get("clientSecret"),
            "subscription_id": result.get("subscriptionId"),
        }

    now = now or utc_now()
    first_subscription = profile.subscription_start_date is None
    previous_plan = profile.subscription_plan

    profile.subscription_plan = plan_key
    profile.subscription_status = "active"
    profile.subscription_start_date = now
    profile.subscription_end_date = None
    profile.next_billing_date = next_billing_date(now)
    profile.monthly_amount_cents = amount_to_cents(plan["amount"])
    profile.max_licenses = plan["max_licenses"]
    profile.stripe_customer_id = result.get("customerId")
    profile.stripe_subscription_id = result.get("subscriptionId")
    profile.payment_method_last4 = result.get("cardLast4")
    profile.payment_method_brand = result.get("cardBrand")
    if first_subscription:
        # The refund window is only ever granted on the first purchase.
        profile.refund_eligible_until = refund_eligible_until(now)
        profile.license_count = 0

    record_payment(
        profile.profile_id,
        amount_to_cents(plan["amount"]),
        "succeeded",
        "subscription_created",
        plan_name=plan_key,
        description=f"{plan['name']} subscription",
        stripe_payment_intent_id=result.get("paymentIntentId"),
    )
    record_subscription_event(
        profile.profile_id,
        "created" if first_subscription else "resubscribed",
        from_plan=previous_plan if previous_plan not in (None, "none") else None,
        to_plan=plan_key,
        amount_cents=amount_to_cents(plan["amount"]),
    )

    failure = _commit("subscription")
    if failure:
        return failure

    current_app.logger.info("Profile %s subscribed to %s", profile_id, plan_key)
    return {
        "success": True,
        "subscription_id": profile.stripe_subscription_id,
        "customer_id": profile.stripe_customer_id,
        "profile": profile.to_dict(),
    }


def upgrade_subscription(profile_id: int, new_plan: str, now: datetime | None = None) -> dict[str, object]:
    plan = get_plan(new_plan)
    if plan is None:
        return _failure("Invalid plan selected")

    profile = _load_profile(profile_id)
    if profile is None:
        return _failure("Profile not found")
    if not profile.stripe_subscription_id:
        return _failure("No active subscription to upgrade", requires_new_subscription=True)
    if not is_upgrade(profile.subscription_plan, new_plan):
        return _failure(f"Cannot change from {profile.subscription_plan} to {new_plan}")

    try:
        result = invoke_function(
            "stripe-upgrade-subscription",
            {
                "userId": profile.profile_id,
                "subscriptionId": profile.stripe_subscription_id,
                "newPriceId": plan["price_id"],
                "newPlanName": new_plan,
            },
        )
    except FunctionInvocationError as exc:
        current_app.logger.warning("Upgrade failed for profile %s: %s", profile_id, exc)
        return _failure(str(exc))

    old_plan = profile.subscription_plan
    proration_cents = int(round(float(result.get("prorationAmount") or 0) * 100))

    profile.subscription_plan = new_plan
    profile.monthly_amount_cents = amount_to_cents(plan["amount"])
    profile.max_licenses = plan["max_licenses"]
    # Any plan change forfeits the refund window.
    profile.refund_eligible_until = None

    record_subscription_event(
        profile.profile_id,
        "upgraded",
        from_plan=old_plan,
        to_plan=new_plan,
        amount_cents=proration_cents,
        details={"proration_amount": proration_cents / 100},
    )
    if proration_cents > 0:
        record_payment(
            profile.profile_id,
            proration_cents,
            "succeeded",
            "upgrade_proration",
            plan_name=new_plan,
            description=f"Upgrade from {old_plan} to {new_plan}",
        )

    failure = _commit("upgrade")
    if failure:
        return failure

    current_app.logger.info("Profile %s upgraded %s -> %s", profile_id, old_plan, new_plan)
    return {
        "success": True,
        "proration_amount": proration_cents / 100,
        "profile": profile.to_dict(),
    }


def _apply_refund(profile: Profile, now: datetime, refund: dict | None, reason: str | None) -> None:
    """Mark the profile refunded and stage the ledger rows."""
    amount_cents = profile.monthly_amount_cents or 0
    if refund and refund.get("refundAmount") is not None:
        amount_cents = int(round(float(refund["refundAmount"]) * 100))

    profile.subscription_status = "refunded"
    profile.subscription_end_date = now
    profile.refund_eligible_until = None

    record_payment(
        profile.profile_id,
        amount_cents,
        "refunded",
        "refund",
        plan_name=profile.subscription_plan,
        description=reason or "Refund within refund window",
        stripe_refund_id=refund.get("refundId") if refund else None,
    )
    record_subscription_event(
        profile.profile_id,
        "refunded",
        from_plan=profile.subscription_plan,
        amount_cents=amount_cents,
        details={
            "automatic_refund": True,
            "reason": reason,
            "stripe_refund_processed": refund is not None,
        },
    )


def cancel_subscription(profile_id: int, reason: str | None = None, now: datetime | None = None) -> dict[str, object]:
    profile = _load_profile(profile_id)
    if profile is None:
        return _failure("Profile not found")

    now = now or utc_now()

    if not profile.stripe_subscription_id:
        # Nothing billed remotely; downgrade locally.
        profile.subscription_plan = "none"
        profile.subscription_status = "cancelled"
        profile.subscription_end_date = now
        profile.max_licenses = 0
        failure = _commit("cancellation")
        if failure:
            return failure
        current_app.logger.info("Profile %s cancelled locally (no Stripe subscription)", profile_id)
        return {"success": True, "local_only": True, "refunded": False}

    if is_refund_eligible(profile.refund_eligible_until, now):
        refund = None
        try:
            refund = invoke_function(
                "stripe-process-refund",
                {"subscriptionId": profile.stripe_subscription_id, "reason": reason},
            )
        except FunctionInvocationError as exc:
            # Local state is still moved to refunded; support reconciles with Stripe.
            current_app.logger.error("Automatic refund failed for profile %s: %s", profile_id, exc)

        _apply_refund(profile, now, refund, reason)
        failure = _commit("refund")
        if failure:
            return failure

        current_app.logger.info("Profile %s cancelled within refund window", profile_id)
        refund = refund or {}
        return {
            "success": True,
            "refunded": True,
            "refund_amount": refund.get("refundAmount", (profile.monthly_amount_cents or 0) / 100),
            "refund_id": refund.get("refundId"),
        }

    try:
        result = invoke_function(
            "stripe-cancel-subscription",
            {"subscriptionId": profile.stripe_subscription_id},
        )
    except FunctionInvocationError as exc:
        current_app.logger.warning("Cancellation failed for profile %s: %s", profile_id, exc)
        return _failure(str(exc))

    profile.subscription_status = "cancelled"
    # Access continues until the period already paid for ends.
    profile.subscription_end_date = profile.next_billing_date
    record_subscription_event(
        profile.profile_id,
        "cancelled",
        from_plan=profile.subscription_plan,
        details={"reason": reason, "cancel_at": result.get("cancelAt")},
    )
    failure = _commit("cancellation")
    if failure:
        return failure

    current_app.logger.info("Profile %s cancelled at period end", profile_id)
    access_until = as_utc(profile.next_billing_date)
    return {
        "success": True,
        "refunded": False,
        "access_until": access_until.isoformat() if access_until else None,
    }


def request_refund(profile_id: int, reason: str | None = None, now: datetime | None = None) -> dict[str, object]:
    profile = _load_profile(profile_id)
    if profile is None:
        return _failure("Profile not found")

    now = now or utc_now()
    if profile.refund_eligible_until is None:
        return _failure("This subscription is not eligible for a refund")
    if not is_refund_eligible(profile.refund_eligible_until, now):
        return _failure("The 7-day refund window has expired")
    if not profile.stripe_subscription_id:
        return _failure("No subscription found to refund")

    try:
        refund = invoke_function(
            "stripe-process-refund",
            {"subscriptionId": profile.stripe_subscription_id, "reason": reason},
        )
    except FunctionInvocationError as exc:
        current_app.logger.warning("Refund request failed for profile %s: %s", profile_id, exc)
        return _failure(str(exc))

    _apply_refund(profile, now, refund, reason)
    failure = _commit("refund")
    if failure:
        return failure

    return {
        "success": True,
        "refund_id": refund.get("refundId"),
        "refund_amount": refund.get("refundAmount"),
    }


def get_subscription_status(profile_id: int, now: datetime | None = None) -> dict[str, object] | None:
    profile = _load_profile(profile_id)
    if profile is None or not profile.subscription_plan:
        return None

    now = now or utc_now()
    plan = get_plan(profile.subscription_plan)
    status = profile.subscription_status
    end_date = as_utc(profile.subscription_end_date)
    billing_date = as_utc(profile.next_billing_date)
    access_until = end_date or billing_date

    is_active = status == "active" or (
        status == "cancelled" and access_until is not None and access_until > now
    )

    return {
        "plan": profile.subscription_plan,
        "plan_details": plan_to_dict(profile.subscription_plan) if plan else None,
        "status": status,
        "is_active": is_active,
        "start_date": profile.subscription_start_date.isoformat() if profile.subscription_start_date else None,
        "next_billing_date": billing_date.isoformat() if billing_date else None,
        "access_until": access_until.isoformat() if access_until else None,
        "monthly_amount": (profile.monthly_amount_cents or 0) / 100,
        "max_licenses": profile.max_licenses,
        "license_count": profile.license_count,
        "is_refund_eligible": is_refund_eligible(profile.refund_eligible_until, now),
        "refund_days_remaining": refund_days_remaining(profile.refund_eligible_until, now),
        "refund_eligible_until": (
            as_utc(profile.refund_eligible_until).isoformat() if profile.refund_eligible_until else None
        ),
        "can_upgrade": status == "active" and profile.subscription_plan != "unlimited",
        "upgrade_options": get_upgrade_options(profile.subscription_plan),
        "payment_method_last4": profile.payment_method_last4,
        "payment_method_brand": profile.payment_method_brand,
    }


def has_active_subscription(profile_id: int, now: datetime | None = None) -> bool:
    status = get_subscription_status(profile_id, now)
    return bool(status and status["is_active"])


def get_payment_history(profile_id: int, limit: int = 50) -> list[dict[str, object]]:
    payments = (
        PaymentHistory.query.filter_by(user_id=profile_id)
        .order_by(PaymentHistory.created_at.desc(), PaymentHistory.payment_id.desc())
        .limit(limit)
        .all()
    )
    return [payment.to_dict() for payment in payments]


def get_all_payments(
    status: str | None = None,
    payment_type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 100,
) -> list[dict[str, object]]:
    query = PaymentHistory.query
    if status:
        query = query.filter(PaymentHistory.status == status)
    if payment_type:
        query = query.filter(PaymentHistory.payment_type == payment_type)
    if start_date:
        query = query.filter(PaymentHistory.created_at >= start_date)
    if end_date:
        query = query.filter(PaymentHistory.created_at <= end_date)

    payments = query.order_by(PaymentHistory.created_at.desc()).limit(limit).all()
    results = []
    for payment in payments:
        data = payment.to_dict()
        data["user"] = payment.user.to_dict_basic() if payment.user else None
        results.append(data)
    return results


def get_payment_stats(now: datetime | None = None) -> dict[str, object]:
    now = now or utc_now()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    stats: dict[str, object] = {
        "total_revenue": 0.0,
        "monthly_revenue": 0.0,
        "total_refunds": 0.0,
        "successful_payments": 0,
        "refunded_payments": 0,
        "failed_payments": 0,
        "pending_payments": 0,
    }
    for payment in PaymentHistory.query.all():
        amount = payment.amount_cents / 100
        if payment.status == "succeeded":
            stats["total_revenue"] += amount
            stats["successful_payments"] += 1
            if as_utc(payment.created_at) >= month_start:
                stats["monthly_revenue"] += amount
        elif payment.status == "refunded":
            stats["total_refunds"] += amount
            stats["refunded_payments"] += 1
        elif payment.status == "failed":
            stats["failed_payments"] += 1
        elif payment.status == "pending":
            stats["pending_payments"] += 1

    counts = dict(
        db.session.query(Profile.subscription_status, func.count(Profile.profile_id))
        .filter(Profile.subscription_status.isnot(None))
        .group_by(Profile.subscription_status)
        .all()
    )
    stats["active_subscriptions"] = counts.get("active", 0)
    stats["cancelled_subscriptions"] = counts.get("cancelled", 0)
    stats["refunded_subscriptions"] = counts.get("refunded", 0)
    stats["past_due_subscriptions"] = counts.get("past_due", 0)

    for key in ("total_revenue", "monthly_revenue", "total_refunds"):
        stats[key] = round(stats[key], 2)
    return stats


def get_admin_payment_overview() -> list[dict[str, object]]:
    """Shops with their owner's subscription details, newest first."""
    shops = Shop.query.order_by(Shop.created_at.desc()).all()
    overview = []
    for shop in shops:
        owner = db.session.get(Profile, shop.created_by)
        entry = {"shop_id": shop.shop_id, "name": shop.name, "email": shop.email, "owner": None}
        if owner is not None:
            entry["owner"] = owner.to_dict_basic()
            entry.update(
                {
                    "subscription_plan": owner.subscription_plan,
                    "subscription_status": owner.subscription_status,
                    "monthly_amount": (owner.monthly_amount_cents or 0) / 100,
                    "next_billing_date": owner.next_billing_date.isoformat() if owner.next_billing_date else None,
                    "refund_eligible_until": (
                        owner.refund_eligible_until.isoformat() if owner.refund_eligible_until else None
                    ),
                    "payment_method_brand": owner.payment_method_brand,
                    "payment_method_last4": owner.payment_method_last4,
                    "max_licenses": owner.max_licenses,
                    "license_count": owner.license_count,
                }
            )
        overview.append(entry)
    return overview


def _owned_shop_ids(profile_id: int) -> list[int]:
    rows = (
        db.session.query(ShopStaff.shop_id)
        .filter(
            ShopStaff.user_id == profile_id,
            ShopStaff.role.in_(["owner", "admin"]),
            ShopStaff.is_active.is_(True),
        )
        .all()
    )
    return [row.shop_id for row in rows]


def check_license_availability(profile_id: int) -> dict[str, object]:
    """Count active barbers across the profile's shops against its plan limit."""
    profile = _load_profile(profile_id)
    if profile is None:
        return _failure("Profile not found")

    shop_ids = _owned_shop_ids(profile_id)
    current = 0
    if shop_ids:
        current = (
            ShopStaff.query.filter(
                ShopStaff.shop_id.in_(shop_ids),
                ShopStaff.role == "barber",
                ShopStaff.is_active.is_(True),
            ).count()
        )

    max_licenses = profile.max_licenses or 0
    if profile.license_count != current:
        profile.license_count = current
        failure = _commit("license count")
        if failure:
            return failure

    return {
        "success": True,
        "can_add": current < max_licenses,
        "current_count": current,
        "max_licenses": max_licenses,
        "remaining": max(0, max_licenses - current),
        "plan": profile.subscription_plan,
    }


def update_license_count(profile_id: int, delta: int) -> dict[str, object]:
    profile = _load_profile(profile_id)
    if profile is None:
        return _failure("Profile not found")
    profile.license_count = max(0, (profile.license_count or 0) + delta)
    failure = _commit("license count")
    if failure:
        return failure
    return {"success": True, "license_count": profile.license_count}
