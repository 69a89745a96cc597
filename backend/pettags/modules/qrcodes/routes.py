from __future__ import annotations

import io

from flask import Blueprint, jsonify, request, send_file

from ...schemas.qrcodes import (
    AutoVerifySchema,
    ConfirmSubscriptionSchema,
    ShareLocationSchema,
    VerifySubscriptionSchema,
)
from ...security import current_user, login_required
from ..subscriptions.ledger import subscription_to_dict
from . import registry, verification
from .contact import share_location as forward_location


bp = Blueprint("qrcodes", __name__, url_prefix="/qrcodes")


def _verification_to_dict(result: dict) -> dict:
    sub = result.get("subscription")
    out = {
        "qrCode": registry.qr_code_to_dict(result["qr_code"]),
        "verified": bool(result.get("verified")),
        "alreadyVerified": bool(result.get("already_verified")),
        "paymentRequired": bool(result.get("payment_required")),
        "subscription": subscription_to_dict(sub) if sub is not None else None,
    }
    if "subscription_created" in result:
        out["subscriptionCreated"] = bool(result["subscription_created"])
    if result.get("payment"):
        out["payment"] = result["payment"]
        out["amount"] = float(result["amount"])
        out["currency"] = result["currency"]
        out["subscriptionType"] = result["subscription_type"]
    return out


@bp.get("/availability")
def availability():
    count = registry.available_count()
    return jsonify({"available": count, "hasStock": count > 0})


@bp.get("/scan/<string:code>")
def scan_code(code: str):
    """Called by the web app when a tag is scanned. Every call counts as a scan."""
    return jsonify(registry.scan(code))


@bp.get("/verify-details/<string:code>")
def verify_details(code: str):
    user = current_user()
    return jsonify(registry.verification_details(code, int(user.id) if user is not None else None))


@bp.get("/<string:code>/image")
def qrcode_image(code: str):
    row = registry.get_code(code)
    size = request.args.get("size")
    try:
        box_size = max(1, min(20, int(size))) if size is not None else 10
    except ValueError:
        box_size = 10
    buf = io.BytesIO(registry.render_png(row.code, box_size))
    return send_file(buf, mimetype="image/png", max_age=60)


@bp.get("/pet-profile/<int:pet_id>")
def pet_profile(pet_id: int):
    return jsonify({"pet": registry.public_pet_profile(pet_id)})


@bp.post("/share-location")
def share_location():
    """Finder shares a location with the owner by SMS or WhatsApp, or asks for the number."""
    data = ShareLocationSchema().load(request.get_json(silent=True) or {})
    out = forward_location(
        data["pet_id"],
        data["method"],
        data["location_url"],
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
        is_manual=data.get("is_manual_location", False),
        pet_name=data.get("pet_name"),
    )
    return jsonify({"success": True, **out})


@bp.post("/auto-verify")
@login_required
def auto_verify():
    data = AutoVerifySchema().load(request.get_json(silent=True) or {})
    result = verification.auto_verify(current_user(), data["qr_code_id"], data.get("pet_id"))
    return jsonify(_verification_to_dict(result))


@bp.post("/verify-subscription")
@login_required
def verify_subscription():
    data = VerifySubscriptionSchema().load(request.get_json(silent=True) or {})
    result = verification.start_verification(
        current_user(),
        data["qr_code_id"],
        data["subscription_type"],
        amount=data.get("amount"),
        currency=data.get("currency"),
        pet_id=data.get("pet_id"),
        payment_method_id=data.get("payment_method_id"),
        auto_renew=data.get("auto_renew", True),
    )
    return jsonify(_verification_to_dict(result))


@bp.post("/confirm-subscription")
@login_required
def confirm_subscription():
    data = ConfirmSubscriptionSchema().load(request.get_json(silent=True) or {})
    result = verification.confirm_verification(
        current_user(),
        data["qr_code_id"],
        data["subscription_type"],
        payment_intent_id=data.get("payment_intent_id"),
        stripe_subscription_id=data.get("stripe_subscription_id"),
        amount=data.get("amount"),
        currency=data.get("currency"),
        pet_id=data.get("pet_id"),
    )
    return jsonify(_verification_to_dict(result))
