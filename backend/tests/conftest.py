import pytest

from pettags import create_app
from pettags.extensions import db
from pettags.integrations.stripe import client as stripe_client
from pettags.modules.notifications import mailer
from pettags.modules.qrcodes import contact


@pytest.fixture()
def app():
    """Fresh app and empty in-memory database per test."""
    app = create_app("testing")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


class FakeStripe:
    """In-memory stand-in for the Stripe REST client."""

    def __init__(self):
        self.intents = {}
        self.subscriptions = {}
        self._seq = 0

    def _next(self, prefix):
        self._seq += 1
        return f"{prefix}_test_{self._seq}"

    def create_payment_intent(self, amount, currency, metadata=None):
        pi = self._next("pi")
        self.intents[pi] = {"amount": amount, "currency": currency, "metadata": metadata or {}, "status": "requires_payment_method"}
        return {"id": pi, "clientSecret": f"{pi}_secret", "status": "requires_payment_method"}

    def create_recurring_subscription(self, *, email, name, amount, currency, interval, metadata, payment_method_id=None):
        sid = self._next("sub")
        self.subscriptions[sid] = {"status": "incomplete", "interval": interval, "amount": amount}
        return {"subscriptionId": sid, "customerId": "cus_test", "clientSecret": f"{sid}_secret", "status": "incomplete"}

    def succeed(self, payment_intent_id):
        self.intents.setdefault(payment_intent_id, {})["status"] = "succeeded"

    def fail(self, payment_intent_id):
        self.intents.setdefault(payment_intent_id, {})["status"] = "canceled"

    def activate(self, subscription_id):
        self.subscriptions.setdefault(subscription_id, {})["status"] = "active"

    def payment_succeeded(self, payment_intent_id):
        return self.intents.get(payment_intent_id, {}).get("status") == "succeeded"

    def retrieve_subscription(self, subscription_id):
        return {"id": subscription_id, "status": self.subscriptions.get(subscription_id, {}).get("status", "incomplete")}

    def cancel_subscription(self, subscription_id):
        self.subscriptions.setdefault(subscription_id, {})["status"] = "canceled"
        return {"id": subscription_id, "status": "canceled"}


@pytest.fixture(autouse=True)
def stripe(monkeypatch):
    fake = FakeStripe()
    for name in ("create_payment_intent", "create_recurring_subscription", "payment_succeeded",
                 "retrieve_subscription", "cancel_subscription"):
        monkeypatch.setattr(stripe_client, name, getattr(fake, name))
    return fake


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Emails handed to the gateway, as (to, subject, html) tuples."""
    sent = []
    monkeypatch.setattr(mailer, "send_email", lambda to, subject, html: sent.append((to, subject, html)))
    return sent


@pytest.fixture(autouse=True)
def texts(monkeypatch):
    """Messages handed to the SMS/WhatsApp gateway."""
    sent = []

    def fake_send(to, body, *, channel="sms"):
        sent.append({"to": to, "body": body, "channel": channel})
        return {"sid": f"SM{len(sent):04d}"}

    monkeypatch.setattr(contact, "send_message", fake_send)
    return sent
