"""Subscription ledger: paid coverage windows per user.

One active, unexpired, paid subscription covers up to five verified tags of its owner.
Payments are recorded idempotently, keyed by the external payment reference.
"""
from __future__ import annotations

import calendar
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from ...extensions import db
from ...errors import ValidationError
from ...models.subscription import Subscription

logger = logging.getLogger(__name__)

SUBSCRIPTION_TYPES = ("monthly", "yearly", "lifetime")
RENEWABLE_TYPES = ("monthly", "yearly")
DEFAULT_CURRENCY = "gbp"
DEFAULT_PRICING = {
    "monthly": Decimal("2.75"),
    "yearly": Decimal("28.99"),
    "lifetime": Decimal("129.99"),
}
MIN_AMOUNT = Decimal("0.01")
MAX_AMOUNT = Decimal("1000")
LIFETIME_YEARS = 100


def _add_months(dt: datetime, months: int) -> datetime:
    # Clamp to the last day of the target month (Jan 31 + 1 month -> Feb 28/29)
    total = dt.month - 1 + months
    year = dt.year + total // 12
    month = total % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def compute_end_date(start: datetime, sub_type: str) -> datetime:
    if sub_type == "monthly":
        return _add_months(start, 1)
    if sub_type == "yearly":
        return _add_months(start, 12)
    if sub_type == "lifetime":
        return _add_months(start, 12 * LIFETIME_YEARS)
    raise ValidationError("Subscription type must be monthly, yearly or lifetime")


def parse_amount(value, sub_type: str | None = None) -> Decimal:
    """Validate a client supplied amount; falls back to the default price for ``sub_type``."""
    if value is None or value == "":
        if sub_type in DEFAULT_PRICING:
            return DEFAULT_PRICING[sub_type]
        raise ValidationError("Amount is required")
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number")
    if amount < MIN_AMOUNT or amount > MAX_AMOUNT:
        raise ValidationError(f"Amount must be between {MIN_AMOUNT} and {MAX_AMOUNT}")
    return amount


def has_active_coverage(user_id: int) -> tuple[bool, Subscription | None]:
    """Return (covered, subscription) for the user's most recent active, unexpired, paid record."""
    now = datetime.utcnow()
    sub = (
        Subscription.query.filter(
            Subscription.user_id == user_id,
            Subscription.status == "active",
            Subscription.end_date > now,
            Subscription.amount_paid > 0,
        )
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )
    return (sub is not None, sub)


def find_by_reference(user_id: int, payment_intent_id: str | None = None, stripe_subscription_id: str | None = None) -> Subscription | None:
    if payment_intent_id:
        return Subscription.query.filter_by(user_id=user_id, payment_intent_id=payment_intent_id).first()
    if stripe_subscription_id:
        return Subscription.query.filter_by(
            user_id=user_id, stripe_subscription_id=stripe_subscription_id, status="active"
        ).first()
    return None


def record_payment(
    user_id: int,
    qr_code_id: int | None,
    sub_type: str,
    amount,
    currency: str | None = None,
    *,
    payment_intent_id: str | None = None,
    stripe_subscription_id: str | None = None,
    commit: bool = True,
) -> tuple[Subscription, bool]:
    """Idempotent upsert of a paid subscription. Returns (record, created).

    A repeated confirmation for the same payment intent (or the same active Stripe
    subscription) updates the existing record in place instead of inserting a duplicate.
    """
    if sub_type not in SUBSCRIPTION_TYPES:
        raise ValidationError("Subscription type must be monthly, yearly or lifetime")
    if not payment_intent_id and not stripe_subscription_id:
        raise ValidationError("A payment reference is required")
    amount_dec = parse_amount(amount, sub_type)

    auto_renew = bool(stripe_subscription_id) and sub_type in RENEWABLE_TYPES
    existing = find_by_reference(user_id, payment_intent_id, stripe_subscription_id)
    if existing is not None:
        # Update in place; the window is anchored on the original start so retries never extend it
        existing.type = sub_type
        existing.amount_paid = amount_dec
        existing.end_date = compute_end_date(existing.start_date, sub_type)
        existing.auto_renew = auto_renew
        if existing.qr_code_id is None and qr_code_id is not None:
            existing.qr_code_id = qr_code_id
        if stripe_subscription_id and not existing.stripe_subscription_id:
            existing.stripe_subscription_id = stripe_subscription_id
        if commit:
            db.session.commit()
        logger.info("Payment %s already recorded as subscription %s", payment_intent_id or stripe_subscription_id, existing.id)
        return existing, False

    start = datetime.utcnow()
    sub = Subscription(
        user_id=user_id,
        qr_code_id=qr_code_id,
        type=sub_type,
        status="active",
        start_date=start,
        end_date=compute_end_date(start, sub_type),
        amount_paid=amount_dec,
        currency=(currency or DEFAULT_CURRENCY).lower(),
        auto_renew=auto_renew,
        stripe_subscription_id=stripe_subscription_id,
        payment_intent_id=payment_intent_id,
    )
    db.session.add(sub)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    logger.info("Recorded %s subscription %s for user %s", sub_type, sub.id, user_id)
    return sub, True


def list_for_user(user_id: int, include_all: bool = False) -> list[Subscription]:
    q = Subscription.query.filter(Subscription.user_id == user_id)
    if not include_all:
        q = q.filter(Subscription.status == "active")
    return q.order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()


def subscription_to_dict(sub: Subscription, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    remaining = (sub.end_date - now).total_seconds() if sub.end_date else 0
    days_remaining = max(0, int(-(-remaining // 86400)))  # ceil
    return {
        "id": int(sub.id),
        "userId": int(sub.user_id),
        "qrCodeId": int(sub.qr_code_id) if sub.qr_code_id is not None else None,
        "type": sub.type,
        "status": sub.status,
        "startDate": sub.start_date.isoformat() if sub.start_date else None,
        "endDate": sub.end_date.isoformat() if sub.end_date else None,
        "amountPaid": float(sub.amount_paid or 0),
        "currency": sub.currency,
        "autoRenew": bool(sub.auto_renew),
        "stripeSubscriptionId": sub.stripe_subscription_id,
        "paymentIntentId": sub.payment_intent_id,
        "daysRemaining": days_remaining,
        "isExpired": remaining <= 0,
        "isExpiringSoon": 0 < remaining <= 7 * 86400,
        "createdAt": sub.created_at.isoformat() if sub.created_at else None,
    }


# Stripe webhook handlers ---------------------------------------------------

def apply_invoice_paid(invoice: dict) -> Subscription | None:
    """Record a renewal from an ``invoice.payment_succeeded`` event.

    The first invoice of a subscription (billing_reason subscription_create) and zero
    amount invoices are ignored; a renewal expires the previous record and inserts a new one.
    """
    stripe_sub_id = invoice.get("subscription")
    if isinstance(stripe_sub_id, dict):
        stripe_sub_id = stripe_sub_id.get("id")
    if not stripe_sub_id:
        return None
    if invoice.get("billing_reason") == "subscription_create":
        return None
    amount_minor = int(invoice.get("amount_paid") or 0)
    if amount_minor <= 0:
        return None
    payment_intent_id = invoice.get("payment_intent")
    if isinstance(payment_intent_id, dict):
        payment_intent_id = payment_intent_id.get("id")

    previous = (
        Subscription.query.filter_by(stripe_subscription_id=stripe_sub_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )
    if previous is None:
        logger.warning("Renewal for unknown Stripe subscription %s", stripe_sub_id)
        return None
    if payment_intent_id and Subscription.query.filter_by(payment_intent_id=payment_intent_id).first():
        logger.info("Renewal invoice %s already recorded", invoice.get("id"))
        return None

    start = datetime.utcnow()
    renewed = Subscription(
        user_id=previous.user_id,
        qr_code_id=previous.qr_code_id,
        type=previous.type,
        status="active",
        start_date=start,
        end_date=compute_end_date(start, previous.type),
        amount_paid=Decimal(amount_minor) / 100,
        currency=(invoice.get("currency") or previous.currency or DEFAULT_CURRENCY).lower(),
        auto_renew=True,
        stripe_subscription_id=stripe_sub_id,
        payment_intent_id=payment_intent_id,
    )
    if previous.status == "active":
        previous.status = "expired"
    db.session.add(renewed)
    db.session.commit()
    logger.info("Renewed Stripe subscription %s as record %s", stripe_sub_id, renewed.id)
    return renewed


def apply_subscription_updated(obj: dict) -> int:
    stripe_sub_id = obj.get("id")
    rows = Subscription.query.filter_by(stripe_subscription_id=stripe_sub_id, status="active").all()
    status = obj.get("status")
    for sub in rows:
        if status in ("canceled", "unpaid"):
            sub.status = "cancelled"
            sub.auto_renew = False
        elif obj.get("current_period_end"):
            sub.end_date = datetime.utcfromtimestamp(int(obj["current_period_end"]))
        if obj.get("cancel_at_period_end"):
            sub.auto_renew = False
    db.session.commit()
    return len(rows)


def apply_subscription_deleted(obj: dict) -> int:
    rows = Subscription.query.filter_by(stripe_subscription_id=obj.get("id"), status="active").all()
    for sub in rows:
        sub.status = "cancelled"
        sub.auto_renew = False
    db.session.commit()
    return len(rows)
