"""Server-side Stripe handlers, invoked by name.

Each handler takes the JSON body a client would post and returns a JSON-able
dict. Handlers raise ``FunctionError`` for bad input; ``invoke`` turns that and
any Stripe failure into ``FunctionInvocationError`` for the caller.
"""
from __future__ import annotations

from collections.abc import Callable

import stripe
from flask import current_app

from .plans import get_plan


class FunctionError(Exception):
    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.status = status


class FunctionInvocationError(Exception):
    def __init__(self, message: str, status: int = 500) -> None:
        super().__init__(message)
        self.status = status


def field_of(obj, name: str, default=None):
    """Read ``name`` from a Stripe object, a plain dict, or an unexpanded id."""
    if obj is None or isinstance(obj, str):
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _id_of(obj) -> str | None:
    if isinstance(obj, str):
        return obj
    return field_of(obj, "id")


def _require(body: dict, *names: str) -> None:
    missing = [name for name in names if not body.get(name)]
    if missing:
        raise FunctionError(f"missing required fields: {', '.join(missing)}")


def create_subscription(body: dict) -> dict[str, object]:
    _require(body, "email", "planName", "paymentMethodId")
    plan = get_plan(body["planName"])
    if plan is None:
        raise FunctionError(f"invalid plan: {body['planName']}")

    metadata = {"shop_id": str(body.get("shopId") or ""), "plan_name": body["planName"]}
    customer = stripe.Customer.create(email=body["email"], metadata=metadata)
    stripe.PaymentMethod.attach(body["paymentMethodId"], customer=customer.id)
    stripe.Customer.modify(
        customer.id,
        invoice_settings={"default_payment_method": body["paymentMethodId"]},
    )

    subscription = stripe.Subscription.create(
        customer=customer.id,
        items=[{"price": plan["price_id"]}],
        default_payment_method=body["paymentMethodId"],
        collection_method="charge_automatically",
        expand=["latest_invoice.payment_intent"],
        metadata=metadata,
    )

    payment_intent = field_of(field_of(subscription, "latest_invoice"), "payment_intent")
    if subscription.status != "active":
        intent_status = field_of(payment_intent, "status")
        if intent_status in {"requires_action", "requires_confirmation"}:
            return {
                "requiresAction": True,
                "clientSecret": field_of(payment_intent, "client_secret"),
                "subscriptionId": subscription.id,
                "customerId": customer.id,
            }
        raise FunctionError(f"payment failed: {intent_status or subscription.status}", status=402)

    card = field_of(stripe.PaymentMethod.retrieve(body["paymentMethodId"]), "card")
    return {
        "success": True,
        "subscriptionId": subscription.id,
        "customerId": customer.id,
        "status": subscription.status,
        "paymentIntentId": _id_of(payment_intent),
        "cardLast4": field_of(card, "last4"),
        "cardBrand": field_of(card, "brand"),
    }


def upgrade_subscription(body: dict) -> dict[str, object]:
    _require(body, "subscriptionId", "newPriceId")
    subscription = stripe.Subscription.retrieve(body["subscriptionId"])
    if subscription.status != "active":
        raise FunctionError(f"subscription is not active: {subscription.status}")

    items = field_of(field_of(subscription, "items"), "data") or []
    if not items:
        raise FunctionError("subscription has no items")

    updated = stripe.Subscription.modify(
        subscription.id,
        items=[{"id": _id_of(items[0]), "price": body["newPriceId"]}],
        proration_behavior="create_prorations",
        metadata={"plan_name": body.get("newPlanName") or "", "user_id": str(body.get("userId") or "")},
    )

    preview = stripe.Invoice.create_preview(
        customer=_id_of(field_of(subscription, "customer")),
        subscription=subscription.id,
    )
    amount_due = field_of(preview, "amount_due") or 0
    return {
        "success": True,
        "subscriptionId": updated.id,
        "status": updated.status,
        "prorationAmount": amount_due / 100,
    }


def cancel_subscription(body: dict) -> dict[str, object]:
    _require(body, "subscriptionId")
    subscription = stripe.Subscription.modify(body["subscriptionId"], cancel_at_period_end=True)
    return {
        "success": True,
        "subscriptionId": subscription.id,
        "status": subscription.status,
        "cancelAt": field_of(subscription, "cancel_at") or field_of(subscription, "current_period_end"),
    }


def _locate_payment(subscription) -> dict[str, str] | None:
    """Find something refundable for the subscription's first charge.

    Returns ``{"payment_intent": id}`` or ``{"charge": id}``.
    """
    invoice = field_of(subscription, "latest_invoice")
    if invoice is not None:
        intent = field_of(invoice, "payment_intent")
        if intent:
            return {"payment_intent": _id_of(intent)}
        charge = field_of(invoice, "charge")
        if charge:
            return {"charge": _id_of(charge)}

        invoice = stripe.Invoice.retrieve(_id_of(invoice))
        intent = field_of(invoice, "payment_intent")
        if intent:
            return {"payment_intent": _id_of(intent)}
        charge = field_of(invoice, "charge")
        if charge:
            return {"charge": _id_of(charge)}

    customer_id = _id_of(field_of(subscription, "customer"))
    if not customer_id:
        return None

    for charge in field_of(stripe.Charge.list(customer=customer_id, limit=10), "data") or []:
        if field_of(charge, "status") == "succeeded" and not field_of(charge, "refunded"):
            return {"charge": _id_of(charge)}

    for intent in field_of(stripe.PaymentIntent.list(customer=customer_id, limit=10), "data") or []:
        if field_of(intent, "status") == "succeeded":
            return {"payment_intent": _id_of(intent)}
    return None


def process_refund(body: dict) -> dict[str, object]:
    _require(body, "subscriptionId")
    subscription = stripe.Subscription.retrieve(
        body["subscriptionId"], expand=["latest_invoice"]
    )
    target = _locate_payment(subscription)
    if target is None:
        raise FunctionError("no refundable payment found for subscription", status=404)

    current_app.logger.info("Refunding subscription %s via %s", subscription.id, target)
    refund = stripe.Refund.create(
        **target,
        reason="requested_by_customer",
        metadata={
            "subscription_id": subscription.id,
            "refund_reason": body.get("reason") or "Cancelled within refund window",
        },
    )
    stripe.Subscription.cancel(subscription.id)

    return {
        "success": True,
        "refundId": refund.id,
        "refundAmount": (field_of(refund, "amount") or 0) / 100,
        "status": refund.status,
    }


HANDLERS: dict[str, Callable[[dict], dict[str, object]]] = {
    "stripe-create-subscription": create_subscription,
    "stripe-upgrade-subscription": upgrade_subscription,
    "stripe-cancel-subscription": cancel_subscription,
    "stripe-process-refund": process_refund,
}


def invoke(name: str, body: dict | None = None) -> dict[str, object]:
    handler = HANDLERS.get(name)
    if handler is None:
        raise FunctionInvocationError(f"unknown function: {name}", status=404)
    if not current_app.config.get("ENABLE_PAYMENTS", True):
        raise FunctionInvocationError("payments are disabled", status=503)

    stripe.api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe.api_key:
        current_app.logger.error("STRIPE_SECRET_KEY is not configured")
        raise FunctionInvocationError("payment provider is not configured", status=503)

    try:
        return handler(body or {})
    except FunctionError as exc:
        current_app.logger.warning("Function %s rejected request: %s", name, exc)
        raise FunctionInvocationError(str(exc), status=exc.status) from exc
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe call failed in %s", name, exc_info=exc)
        message = getattr(exc, "user_message", None) or str(exc)
        raise FunctionInvocationError(message, status=502) from exc
