"""Subscription plan catalog and the pure billing rules built on it."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

REFUND_DAYS = 7
BILLING_CYCLE_DAYS = 30

STRIPE_PLANS: dict[str, dict[str, object]] = {
    "basic": {
        "name": "Back of the Line",
        "price_id": "price_1SR36oHqPXhoiSmsprlpcDjq",
        "amount": Decimal("24.99"),
        "providers": "1-2",
        "max_licenses": 2,
        "description": "Perfect for solo providers",
    },
    "starter": {
        "name": "Middle of the Line",
        "price_id": "price_1SR3FaHqPXhoiSmsmsgGNNf6",
        "amount": Decimal("74.99"),
        "providers": "3-4",
        "max_licenses": 4,
        "description": "Perfect for small teams",
    },
    "professional": {
        "name": "Front of the Line",
        "price_id": "price_1SR3K6HqPXhoiSmsuRKPdTUT",
        "amount": Decimal("99.99"),
        "providers": "5-9",
        "max_licenses": 9,
        "description": "Growing teams with multiple providers",
    },
    "enterprise": {
        "name": "Skip The Line Pass",
        "price_id": "price_1SR3LqHqPXhoiSmsnHthwoHq",
        "amount": Decimal("149.99"),
        "providers": "10-14",
        "max_licenses": 14,
        "description": "Established businesses",
    },
    "unlimited": {
        "name": "Never A Line - Unlimited",
        "price_id": "price_1SYT3nHqPXhoiSmsIebDJXfd",
        "amount": Decimal("199.00"),
        "providers": "Unlimited",
        "max_licenses": 9999,
        "description": "Unlimited licenses with priority support",
    },
}

PLAN_ORDER = ["basic", "starter", "professional", "enterprise", "unlimited"]

CENT = Decimal("0.01")


def get_plan(plan_key: str | None) -> dict[str, object] | None:
    if not plan_key:
        return None
    return STRIPE_PLANS.get(plan_key)


def plan_to_dict(plan_key: str) -> dict[str, object]:
    plan = STRIPE_PLANS[plan_key]
    return {
        "key": plan_key,
        "name": plan["name"],
        "price_id": plan["price_id"],
        "amount": float(plan["amount"]),
        "providers": plan["providers"],
        "max_licenses": plan["max_licenses"],
        "description": plan["description"],
    }


def amount_to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_upgrade_options(current_plan: str | None) -> list[str]:
    """Return the plans ranked above ``current_plan``, cheapest first."""
    if current_plan not in PLAN_ORDER:
        return []
    return PLAN_ORDER[PLAN_ORDER.index(current_plan) + 1:]


def is_upgrade(current_plan: str | None, new_plan: str) -> bool:
    return new_plan in get_upgrade_options(current_plan)


def calculate_upgrade_proration(
    current_plan: str, new_plan: str, days_used: int = 15
) -> dict[str, object]:
    """Estimate what an upgrade costs for the rest of a 30-day cycle.

    The unused part of the current plan is credited against the same share of
    the new plan. ``credit`` and ``charge`` are exact; ``proration_amount``
    is rounded to cents and never negative.
    """
    current = get_plan(current_plan)
    new = get_plan(new_plan)
    if current is None or new is None:
        raise ValueError(f"unknown plan: {current_plan if current is None else new_plan}")

    days_remaining = BILLING_CYCLE_DAYS - int(days_used)
    credit = current["amount"] / BILLING_CYCLE_DAYS * days_remaining
    charge = new["amount"] / BILLING_CYCLE_DAYS * days_remaining
    due = max(Decimal("0"), charge - credit).quantize(CENT, rounding=ROUND_HALF_UP)

    return {
        "current_amount": current["amount"],
        "new_amount": new["amount"],
        "days_remaining": days_remaining,
        "credit": credit,
        "charge": charge,
        "proration_amount": due,
    }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def refund_eligible_until(start: datetime) -> datetime:
    return start + timedelta(days=REFUND_DAYS)


def next_billing_date(start: datetime) -> datetime:
    return start + timedelta(days=BILLING_CYCLE_DAYS)


def is_refund_eligible(eligible_until: datetime | None, now: datetime | None = None) -> bool:
    if eligible_until is None:
        return False
    now = _as_utc(now or datetime.now(timezone.utc))
    return now < _as_utc(eligible_until)


def refund_days_remaining(eligible_until: datetime | None, now: datetime | None = None) -> int:
    """Whole days left in the refund window, rounded up."""
    if eligible_until is None:
        return 0
    now = _as_utc(now or datetime.now(timezone.utc))
    remaining = (_as_utc(eligible_until) - now).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining / 86400)
