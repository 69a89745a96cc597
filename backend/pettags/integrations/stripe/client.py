from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
from typing import Any

import requests

logger = logging.getLogger(__name__)

API_URL = "https://api.stripe.com/v1"


class StripeError(RuntimeError):
    pass


def _secret_key() -> str:
    key = os.getenv("STRIPE_SECRET_KEY")
    if not key:
        raise StripeError("Stripe credentials are not configured")
    return key


def _flatten(params: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Encode nested dicts/lists the way the Stripe API expects form bodies (a[b][0]=c)."""
    out: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            out.extend(_flatten(value, name))
        elif isinstance(value, (list, tuple)):
            for i, v in enumerate(value):
                if isinstance(v, dict):
                    out.extend(_flatten(v, f"{name}[{i}]"))
                else:
                    out.append((f"{name}[{i}]", str(v)))
        elif isinstance(value, bool):
            out.append((name, "true" if value else "false"))
        else:
            out.append((name, str(value)))
    return out


def _request(method: str, path: str, params: dict | None = None) -> dict:
    url = f"{API_URL}{path}"
    encoded = _flatten(params or {})
    if method == "GET":
        resp = requests.get(url, params=encoded, auth=(_secret_key(), ""), timeout=30)
    else:
        resp = requests.post(url, data=encoded, auth=(_secret_key(), ""), timeout=30)
    try:
        resp.raise_for_status()
    except requests.HTTPError as e:  # Surface Stripe error details to caller
        try:
            err = (resp.json() or {}).get("error") or {}
            details = f"Stripe API error ({err.get('type')} code={err.get('code')}): {err.get('message') or e}"
        except Exception:
            details = f"HTTP {resp.status_code}: {resp.text[:500]}"
        raise StripeError(details) from e
    return resp.json()


def to_minor_units(amount: Any) -> int:
    return int(round(float(amount) * 100))


def create_payment_intent(amount: Any, currency: str, metadata: dict | None = None) -> dict:
    """Create a payment intent for ``amount`` (major units). Returns ``{id, clientSecret, status}``."""
    intent = _request("POST", "/payment_intents", {
        "amount": to_minor_units(amount),
        "currency": (currency or "gbp").lower(),
        "metadata": {k: str(v) for k, v in (metadata or {}).items() if v is not None},
        "automatic_payment_methods": {"enabled": True},
    })
    return {"id": intent.get("id"), "clientSecret": intent.get("client_secret"), "status": intent.get("status")}


def retrieve_payment_intent(payment_intent_id: str) -> dict:
    return _request("GET", f"/payment_intents/{payment_intent_id}")


def payment_succeeded(payment_intent_id: str) -> bool:
    intent = retrieve_payment_intent(payment_intent_id)
    return intent.get("status") == "succeeded"


def _get_or_create_customer(email: str, name: str | None, metadata: dict) -> str:
    found = _request("GET", "/customers", {"email": email, "limit": 1})
    rows = found.get("data") or []
    if rows:
        return rows[0]["id"]
    created = _request("POST", "/customers", {"email": email, "name": name, "metadata": metadata})
    return created["id"]


def create_recurring_subscription(
    *,
    email: str,
    name: str | None,
    amount: Any,
    currency: str,
    interval: str,
    metadata: dict,
    payment_method_id: str | None = None,
) -> dict:
    """Create an auto-renewing subscription billed every ``interval`` (month|year).

    Returns ``{subscriptionId, customerId, clientSecret, status}``; the client secret belongs to
    the first invoice's payment intent and is confirmed by the frontend.
    """
    meta = {k: str(v) for k, v in metadata.items() if v is not None}
    customer_id = _get_or_create_customer(email, name, {"userId": meta.get("userId")})
    product = _request("POST", "/products", {
        "name": f"Pet Tag {'Monthly' if interval == 'month' else 'Yearly'} Subscription",
        "metadata": {"subscriptionType": meta.get("subscriptionType") or interval},
    })
    price = _request("POST", "/prices", {
        "currency": (currency or "gbp").lower(),
        "unit_amount": to_minor_units(amount),
        "recurring": {"interval": interval},
        "product": product["id"],
    })
    if payment_method_id:
        _request("POST", f"/payment_methods/{payment_method_id}/attach", {"customer": customer_id})
        _request("POST", f"/customers/{customer_id}", {
            "invoice_settings": {"default_payment_method": payment_method_id},
        })
    sub = _request("POST", "/subscriptions", {
        "customer": customer_id,
        "items": [{"price": price["id"]}],
        "payment_behavior": "default_incomplete",
        "payment_settings": {"save_default_payment_method": "on_subscription"},
        "expand": ["latest_invoice.payment_intent"],
        "metadata": meta,
    })
    invoice = sub.get("latest_invoice") or {}
    intent = invoice.get("payment_intent") if isinstance(invoice, dict) else None
    client_secret = intent.get("client_secret") if isinstance(intent, dict) else None
    logger.info("Stripe subscription %s created (status=%s)", sub.get("id"), sub.get("status"))
    return {
        "subscriptionId": sub.get("id"),
        "customerId": customer_id,
        "clientSecret": client_secret,
        "status": sub.get("status"),
    }


def retrieve_subscription(subscription_id: str) -> dict:
    return _request("GET", f"/subscriptions/{subscription_id}")


def cancel_subscription(subscription_id: str) -> dict:
    resp = requests.delete(f"{API_URL}/subscriptions/{subscription_id}", auth=(_secret_key(), ""), timeout=30)
    if resp.status_code >= 400:
        raise StripeError(f"HTTP {resp.status_code}: {resp.text[:500]}")
    return resp.json()


def construct_event(payload: bytes, sig_header: str | None, secret: str | None, tolerance: int = 300) -> dict:
    """Verify a webhook ``Stripe-Signature`` header and return the parsed event.

    Header format: ``t=<unix>,v1=<hex hmac-sha256 of "t.payload">[,v1=...]``.
    Raises ValueError when the signature is missing, stale or does not match.
    """
    if not secret:
        raise ValueError("Webhook secret is not configured")
    if not sig_header:
        raise ValueError("Missing Stripe-Signature header")
    timestamp = None
    signatures: list[str] = []
    for part in sig_header.split(","):
        k, _, v = part.strip().partition("=")
        if k == "t":
            timestamp = v
        elif k == "v1":
            signatures.append(v)
    if not timestamp or not signatures:
        raise ValueError("Malformed Stripe-Signature header")
    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, s) for s in signatures):
        raise ValueError("Signature mismatch")
    try:
        ts = int(timestamp)
    except ValueError as e:
        raise ValueError("Malformed timestamp") from e
    if tolerance and abs(time.time() - ts) > tolerance:
        raise ValueError("Timestamp outside tolerance")
    return json.loads(payload.decode("utf-8"))


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header value for ``payload`` (used by tests and local tooling)."""
    ts = int(timestamp if timestamp is not None else time.time())
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"
