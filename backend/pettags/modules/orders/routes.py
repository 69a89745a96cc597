from flask import Blueprint, jsonify, request

from ...models.order import UserPetTagOrder
from ...schemas.orders import (
    ConfirmPaymentSchema,
    GuestOrderSchema,
    ReplacementOrderSchema,
    UserPetTagOrderSchema,
)
from ...security import current_user, login_required
from ..qrcodes.registry import qr_code_to_dict
from . import provisioning

bp = Blueprint("orders", __name__)


def _intent_to_dict(intent: dict) -> dict:
    return {"paymentIntentId": intent.get("id"), "clientSecret": intent.get("clientSecret")}


def _outcome_to_dict(outcome: dict, serialize) -> dict:
    pet = outcome.get("pet")
    code = outcome.get("qr_code")
    return {
        "order": serialize(outcome["order"]),
        "petId": int(pet.id) if pet is not None else None,
        "qrCode": qr_code_to_dict(code) if code is not None else None,
        "revokedCodes": outcome.get("revoked_codes") or [],
        "paymentSucceeded": outcome["order"].payment_status == "succeeded",
    }


# Account orders ------------------------------------------------------------

@bp.post("/user-pet-tag-orders")
@login_required
def create_order():
    data = UserPetTagOrderSchema().load(request.get_json(silent=True) or {})
    order, intent = provisioning.create_user_order(current_user(), data)
    return jsonify({"order": provisioning.order_to_dict(order), **_intent_to_dict(intent)}), 201


@bp.get("/user-pet-tag-orders")
@login_required
def list_orders():
    orders = (
        UserPetTagOrder.query.filter_by(user_id=current_user().id)
        .order_by(UserPetTagOrder.created_at.desc(), UserPetTagOrder.id.desc())
        .all()
    )
    return jsonify({"orders": [provisioning.order_to_dict(o) for o in orders]})


@bp.get("/user-pet-tag-orders/<int:order_id>")
@login_required
def get_order(order_id: int):
    order = provisioning.get_user_order(current_user().id, order_id)
    return jsonify({"order": provisioning.order_to_dict(order)})


@bp.post("/user-pet-tag-orders/<int:order_id>/confirm-payment")
@login_required
def confirm_order(order_id: int):
    data = ConfirmPaymentSchema().load(request.get_json(silent=True) or {})
    outcome = provisioning.confirm_user_order(
        current_user().id, order_id, data.get("payment_intent_id"), replacement=False
    )
    return jsonify(_outcome_to_dict(outcome, provisioning.order_to_dict))


# Replacement tags ----------------------------------------------------------

@bp.post("/pets/<int:pet_id>/replacement-order")
@login_required
def create_replacement(pet_id: int):
    data = ReplacementOrderSchema().load(request.get_json(silent=True) or {})
    order, intent = provisioning.create_replacement_order(current_user(), pet_id, data)
    return jsonify({"order": provisioning.order_to_dict(order), **_intent_to_dict(intent)}), 201


@bp.post("/replacement-orders/<int:order_id>/confirm-payment")
@login_required
def confirm_replacement(order_id: int):
    data = ConfirmPaymentSchema().load(request.get_json(silent=True) or {})
    outcome = provisioning.confirm_user_order(
        current_user().id, order_id, data.get("payment_intent_id"), replacement=True
    )
    return jsonify(_outcome_to_dict(outcome, provisioning.order_to_dict))


# Guest checkout ------------------------------------------------------------

@bp.post("/orders")
def create_guest_order():
    data = GuestOrderSchema().load(request.get_json(silent=True) or {})
    order, intent = provisioning.create_guest_order(data)
    return jsonify({"order": provisioning.guest_order_to_dict(order), **_intent_to_dict(intent)}), 201


@bp.post("/orders/<int:order_id>/confirm-payment")
def confirm_guest_order(order_id: int):
    data = ConfirmPaymentSchema().load(request.get_json(silent=True) or {})
    outcome = provisioning.confirm_guest_order(order_id, data.get("payment_intent_id"))
    return jsonify(_outcome_to_dict(outcome, provisioning.guest_order_to_dict))
