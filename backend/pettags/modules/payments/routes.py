import logging

from flask import Blueprint, current_app, jsonify, request

from ...extensions import db
from ...integrations.stripe.client import construct_event
from ...models.user import User
from ..notifications import templates
from ..notifications.mailer import dispatch_email
from ..subscriptions import ledger

logger = logging.getLogger(__name__)

bp = Blueprint("payments", __name__, url_prefix="/payments")


def _notify_renewal(sub) -> None:
    user = db.session.get(User, sub.user_id)
    if user is None:
        return
    subject, html = templates.subscription_notification(
        customer_name=user.full_name,
        action="Renewed",
        plan_type=sub.type,
        amount=f"{float(sub.amount_paid):.2f} {sub.currency.upper()}",
        valid_until=sub.end_date.strftime("%d %b %Y"),
        payment_date=sub.start_date.strftime("%d %b %Y"),
    )
    dispatch_email(user.email, subject, html)


@bp.post("/stripe/webhook")
def stripe_webhook():
    """Stripe events for recurring subscriptions. Unknown event types are acknowledged and ignored."""
    payload = request.get_data()
    try:
        event = construct_event(
            payload,
            request.headers.get("Stripe-Signature"),
            current_app.config.get("STRIPE_WEBHOOK_SECRET"),
        )
    except ValueError as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        return jsonify({"error": "Invalid signature"}), 400

    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info("Stripe webhook %s (%s)", event_type, event.get("id"))

    if event_type == "invoice.payment_succeeded":
        renewed = ledger.apply_invoice_paid(obj)
        if renewed is not None:
            _notify_renewal(renewed)
    elif event_type == "customer.subscription.updated":
        ledger.apply_subscription_updated(obj)
    elif event_type == "customer.subscription.deleted":
        ledger.apply_subscription_deleted(obj)
    return jsonify({"received": True})
