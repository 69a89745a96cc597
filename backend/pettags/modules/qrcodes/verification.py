"""Tag verification flows on top of the registry and the subscription ledger.

A tag is verified from existing coverage when the owner has it; otherwise a payment
is opened and the tag is verified once that payment is confirmed and recorded.
"""
from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ...errors import ConflictError, UpstreamError, ValidationError
from ...integrations.stripe import client as stripe_client
from ...models.qr_code import QRCode
from ...models.user import User
from ..notifications import templates
from ..notifications.mailer import dispatch_email
from ..subscriptions import ledger
from . import registry

logger = logging.getLogger(__name__)


def notify_tag_activated(user: User | None, row: QRCode) -> None:
    if user is None:
        return
    pet = registry.resolve_pet(row)
    base = (current_app.config.get("FRONTEND_URL") or "").rstrip("/")
    subject, html = templates.tag_activated(
        owner_name=user.full_name,
        pet_name=pet.pet_name if pet else "",
        qr_code=row.code,
        activated_at=datetime.utcnow().strftime("%d %b %Y %H:%M UTC"),
        profile_url=f"{base}/profile/{pet.id}" if pet else None,
    )
    dispatch_email(user.email, subject, html)


def auto_verify(user: User, qr_code_id: int, pet_id: int | None = None) -> dict:
    """Verify a tag purely from existing coverage; never starts a payment."""
    result = registry.verify_or_auto_verify(int(user.id), qr_code_id, pet_id)
    if result["payment_required"]:
        raise ValidationError(
            "No active subscription found. Please purchase a subscription to verify this QR code.",
            code="SUBSCRIPTION_REQUIRED",
        )
    if not result["already_verified"]:
        notify_tag_activated(user, result["qr_code"])
    return result


def start_verification(
    user: User,
    qr_code_id: int,
    sub_type: str,
    *,
    amount=None,
    currency: str | None = None,
    pet_id: int | None = None,
    payment_method_id: str | None = None,
    auto_renew: bool = True,
) -> dict:
    """Verify via existing coverage when possible, otherwise open a payment for a new subscription.

    Monthly/yearly plans with a saved card and auto-renew become a recurring Stripe
    subscription; everything else is a one-off payment intent.
    """
    if sub_type not in ledger.SUBSCRIPTION_TYPES:
        raise ValidationError("Subscription type must be monthly, yearly or lifetime")
    amount_dec = ledger.parse_amount(amount, sub_type)
    currency = (currency or ledger.DEFAULT_CURRENCY).lower()

    result = registry.verify_or_auto_verify(int(user.id), qr_code_id, pet_id)
    if not result["payment_required"]:
        if not result["already_verified"]:
            notify_tag_activated(user, result["qr_code"])
        return result

    registry.check_verified_cap(int(user.id))
    row: QRCode = result["qr_code"]
    pet = registry.resolve_pet(row)
    metadata = {
        "userId": user.id,
        "qrCodeId": row.id,
        "subscriptionType": sub_type,
        "petName": pet.pet_name if pet else None,
    }
    try:
        if sub_type in ledger.RENEWABLE_TYPES and payment_method_id and auto_renew:
            created = stripe_client.create_recurring_subscription(
                email=user.email,
                name=user.full_name or None,
                amount=amount_dec,
                currency=currency,
                interval="month" if sub_type == "monthly" else "year",
                metadata=metadata,
                payment_method_id=payment_method_id,
            )
            payment = {
                "kind": "subscription",
                "subscriptionId": created["subscriptionId"],
                "clientSecret": created.get("clientSecret"),
                "status": created.get("status"),
            }
        else:
            created = stripe_client.create_payment_intent(amount_dec, currency, metadata)
            payment = {
                "kind": "payment_intent",
                "paymentIntentId": created["id"],
                "clientSecret": created.get("clientSecret"),
            }
    except stripe_client.StripeError as e:
        logger.error("Could not start payment for QR code %s: %s", row.code, e)
        raise UpstreamError("Failed to create payment", details=str(e))

    payment["publishableKey"] = current_app.config.get("STRIPE_PUBLISH_KEY")
    result.update({
        "payment": payment,
        "amount": amount_dec,
        "currency": currency,
        "subscription_type": sub_type,
    })
    return result


def _payment_confirmed(payment_intent_id: str | None, stripe_subscription_id: str | None) -> bool:
    try:
        if payment_intent_id:
            return stripe_client.payment_succeeded(payment_intent_id)
        sub = stripe_client.retrieve_subscription(stripe_subscription_id)
        return sub.get("status") in ("active", "trialing")
    except stripe_client.StripeError as e:
        raise UpstreamError("Could not confirm payment", details=str(e))


def confirm_verification(
    user: User,
    qr_code_id: int,
    sub_type: str,
    *,
    payment_intent_id: str | None = None,
    stripe_subscription_id: str | None = None,
    amount=None,
    currency: str | None = None,
    pet_id: int | None = None,
) -> dict:
    """Finish a paid verification.

    Safe to retry: the payment is recorded through the ledger's idempotent upsert, and a
    code that is already verified is left alone. The payment is recorded before the cap
    is checked so money taken is never lost, even when the verification is refused.
    """
    if not payment_intent_id and not stripe_subscription_id:
        raise ValidationError("paymentIntentId or stripeSubscriptionId is required")
    uid = int(user.id)
    row = registry.get_code_by_id(qr_code_id)
    if row.assigned_user_id is not None and int(row.assigned_user_id) != uid:
        raise ConflictError("QR code is already assigned to another user", code="QR_CODE_ALREADY_ASSIGNED")

    known = ledger.find_by_reference(uid, payment_intent_id, stripe_subscription_id)
    if known is None and not _payment_confirmed(payment_intent_id, stripe_subscription_id):
        raise ValidationError("Payment has not been completed")

    sub, created = ledger.record_payment(
        uid,
        int(row.id),
        sub_type,
        amount,
        currency,
        payment_intent_id=payment_intent_id,
        stripe_subscription_id=stripe_subscription_id,
    )
    if created:
        subject, html = templates.subscription_notification(
            customer_name=user.full_name,
            action="Activated",
            plan_type=sub.type,
            amount=f"{float(sub.amount_paid):.2f} {sub.currency.upper()}",
            valid_until=sub.end_date.strftime("%d %b %Y"),
            payment_date=sub.start_date.strftime("%d %b %Y"),
        )
        dispatch_email(user.email, subject, html)

    if row.assigned_user_id is None or row.status == "unassigned":
        row = registry.assign_to_user(row, uid, pet_id)
    already = bool(row.has_verified and row.status == "verified")
    if not already:
        registry.mark_verified_within_cap(row, uid)
        notify_tag_activated(user, row)
    return {
        "qr_code": row,
        "subscription": sub,
        "verified": True,
        "already_verified": already,
        "payment_required": False,
        "subscription_created": created,
    }
