"""Order provisioning: what happens once a tag order's payment is confirmed.

Standard orders create the pet and hand it a tag from stock. Replacement orders
reuse the existing pet and swap its tag. Failed payments only flag the order.
Re-running a confirmation never creates a second pet or claims a second tag.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import current_app
from sqlalchemy import func

from ...extensions import db
from ...errors import NotFoundError, UpstreamError, ValidationError
from ...integrations.stripe import client as stripe_client
from ...models.enums import MAX_PETS_PER_USER
from ...models.order import PetTagOrder, UserPetTagOrder
from ...models.pet import Pet
from ...models.qr_code import QRCode
from ...models.user import User
from ..notifications import templates
from ..notifications.mailer import dispatch_email
from ..qrcodes import registry

logger = logging.getLogger(__name__)

REPLACEMENT_PRICE = Decimal("2.95")
ORDER_CURRENCY = "eur"
GUEST_CURRENCY = "gbp"
ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")

# Pet.order_type tag for each order model
ORDER_TYPES = {
    UserPetTagOrder: "UserPetTagOrder",
    PetTagOrder: "PetTagOrder",
}


def order_type_of(order) -> str:
    try:
        return ORDER_TYPES[type(order)]
    except KeyError:
        raise TypeError(f"Unsupported order type {type(order).__name__}")


def pet_count(user_id: int) -> int:
    return Pet.query.filter_by(user_id=user_id).count()


def _money(value, field: str) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number")
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return amount


def _open_payment(amount: Decimal, currency: str, metadata: dict) -> dict:
    try:
        return stripe_client.create_payment_intent(amount, currency, metadata)
    except stripe_client.StripeError as e:
        logger.error("Payment intent creation failed: %s", e)
        raise UpstreamError("Failed to create payment intent", details=str(e))


def _payment_succeeded(payment_intent_id: str) -> bool:
    try:
        return stripe_client.payment_succeeded(payment_intent_id)
    except stripe_client.StripeError as e:
        raise UpstreamError("Could not confirm payment", details=str(e))


def create_user_order(user: User, data: dict) -> tuple[UserPetTagOrder, dict]:
    """Create a pending tag order and its payment intent. ``data`` is already schema-validated."""
    if pet_count(user.id) >= MAX_PETS_PER_USER:
        raise ValidationError(f"You can register at most {MAX_PETS_PER_USER} pets per account")
    total = _money(data["total_cost_euro"], "totalCostEuro")
    order = UserPetTagOrder(
        user_id=user.id,
        quantity=int(data.get("quantity") or 1),
        pet_name=data["pet_name"],
        total_cost_euro=total,
        tag_color=data.get("tag_color"),
        phone=data.get("phone") or user.phone,
        is_replacement=False,
    )
    for field in ADDRESS_FIELDS:
        setattr(order, field, data.get(field) or getattr(user, field))
    db.session.add(order)
    db.session.flush()
    intent = _open_payment(total, ORDER_CURRENCY, {
        "userId": user.id,
        "orderId": order.id,
        "petName": order.pet_name,
        "quantity": order.quantity,
        "tagColor": order.tag_color,
    })
    order.payment_intent_id = intent["id"]
    db.session.commit()
    return order, intent


def create_replacement_order(user: User, pet_id: int, data: dict) -> tuple[UserPetTagOrder, dict]:
    pet = Pet.query.filter_by(id=pet_id, user_id=user.id).first()
    if pet is None:
        raise NotFoundError("Pet not found")
    order = UserPetTagOrder(
        user_id=user.id,
        quantity=1,
        pet_name=pet.pet_name,
        total_cost_euro=REPLACEMENT_PRICE,
        tag_color=data.get("tag_color"),
        phone=data.get("phone") or user.phone,
        is_replacement=True,
        replacement_pet_id=pet.id,
    )
    for field in ADDRESS_FIELDS:
        setattr(order, field, data.get(field) or getattr(user, field))
    db.session.add(order)
    db.session.flush()
    intent = _open_payment(REPLACEMENT_PRICE, ORDER_CURRENCY, {
        "userId": user.id,
        "orderId": order.id,
        "petId": pet.id,
        "petName": pet.pet_name,
        "replacement": "true",
    })
    order.payment_intent_id = intent["id"]
    db.session.commit()
    return order, intent


def create_guest_order(data: dict) -> tuple[PetTagOrder, dict]:
    price = _money(data["price"], "price")
    order = PetTagOrder(
        email=data["email"].strip().lower(),
        name=data["name"],
        pet_name=data["pet_name"],
        quantity=int(data.get("quantity") or 1),
        subscription_type=data.get("subscription_type") or "monthly",
        price=price,
        phone=data.get("phone"),
        shipping_address=data.get("shipping_address"),
    )
    db.session.add(order)
    db.session.flush()
    intent = _open_payment(price, GUEST_CURRENCY, {
        "orderId": order.id,
        "email": order.email,
        "petName": order.pet_name,
        "subscriptionType": order.subscription_type,
    })
    order.payment_intent_id = intent["id"]
    db.session.commit()
    return order, intent


def get_user_order(user_id: int, order_id: int, *, replacement: bool | None = None) -> UserPetTagOrder:
    q = UserPetTagOrder.query.filter_by(id=order_id, user_id=user_id)
    if replacement is not None:
        q = q.filter_by(is_replacement=replacement)
    order = q.first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def confirm_user_order(user_id: int, order_id: int, payment_intent_id: str | None = None, *, replacement: bool | None = None) -> dict:
    order = get_user_order(user_id, order_id, replacement=replacement)
    pi = payment_intent_id or order.payment_intent_id
    if not pi:
        raise ValidationError("Payment intent ID is required")
    if order.payment_intent_id and payment_intent_id and payment_intent_id != order.payment_intent_id:
        raise ValidationError("Payment intent does not belong to this order")
    succeeded = order.payment_status == "succeeded" or _payment_succeeded(pi)
    order.payment_intent_id = pi
    return on_payment_confirmed(order, succeeded)


def confirm_guest_order(order_id: int, payment_intent_id: str | None = None) -> dict:
    order = db.session.get(PetTagOrder, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    pi = payment_intent_id or order.payment_intent_id
    if not pi:
        raise ValidationError("Payment intent ID is required")
    succeeded = order.payment_status == "succeeded" or _payment_succeeded(pi)
    order.payment_intent_id = pi
    return on_payment_confirmed(order, succeeded)


def on_payment_confirmed(order, succeeded: bool = True) -> dict:
    """Apply the outcome of a payment to an order of either type."""
    kind = order_type_of(order)
    if not succeeded:
        order.payment_status = "failed"
        db.session.commit()
        logger.info("Payment failed for %s %s", kind, order.id)
        return {"order": order, "pet": None, "qr_code": None, "revoked_codes": []}

    order.payment_status = "succeeded"
    if order.status == "pending":
        order.status = "paid"
    db.session.commit()

    if kind == "UserPetTagOrder":
        if order.is_replacement:
            return _provision_replacement(order)
        return _provision_standard(order)
    if kind == "PetTagOrder":
        return _provision_guest(order)
    raise TypeError(f"Unsupported order type {kind}")


def _current_code(pet: Pet) -> Optional[QRCode]:
    return QRCode.query.filter(
        QRCode.assigned_pet_id == pet.id, QRCode.status.in_(registry.LINKED_STATUSES)
    ).first()


def _pet_for_order(user_id: int, order_id: int, order_type: str, pet_name: str) -> tuple[Pet, bool]:
    pet = Pet.query.filter_by(user_id=user_id, user_pet_tag_order_id=order_id, order_type=order_type).first()
    if pet is not None:
        return pet, False
    pet = Pet(user_id=user_id, user_pet_tag_order_id=order_id, order_type=order_type, pet_name=pet_name)
    db.session.add(pet)
    db.session.commit()
    return pet, True


def _send_order_email(user: User | None, email: str | None, order, pet_name: str, total) -> None:
    base = (current_app.config.get("FRONTEND_URL") or "").rstrip("/")
    subject, html = templates.order_confirmation(
        customer_name=(user.full_name if user else getattr(order, "name", "")) or "",
        order_number=f"{order_type_of(order)}-{order.id}",
        pet_name=pet_name,
        quantity=int(order.quantity or 1),
        order_date=order.created_at.strftime("%d %b %Y") if order.created_at else "",
        total_amount=f"{float(total):.2f}",
        dashboard_url=f"{base}/dashboard/pets",
    )
    dispatch_email(email, subject, html)


def _provision_standard(order: UserPetTagOrder) -> dict:
    pet, created = _pet_for_order(int(order.user_id), int(order.id), "UserPetTagOrder", order.pet_name)
    code = _current_code(pet)
    if code is None:
        code = registry.claim_available_code(user_id=int(order.user_id), pet_id=int(pet.id), order_id=int(order.id))
        if code is None:
            logger.warning("Order %s paid but no QR code was available for pet %s", order.id, pet.id)
    if created:
        user = db.session.get(User, order.user_id)
        _send_order_email(user, user.email if user else None, order, pet.pet_name, order.total_cost_euro)
    return {"order": order, "pet": pet, "qr_code": code, "revoked_codes": []}


def _provision_replacement(order: UserPetTagOrder) -> dict:
    if order.replacement_pet_id is not None:
        pet = Pet.query.filter_by(id=order.replacement_pet_id, user_id=order.user_id).first()
    else:
        pet = (
            Pet.query.filter_by(user_id=order.user_id, pet_name=order.pet_name)
            .order_by(Pet.id)
            .first()
        )
    if pet is None:
        raise NotFoundError("Pet not found for replacement order")

    if order.issued_qr_code_id is not None:
        # Already swapped by an earlier confirmation
        code = db.session.get(QRCode, order.issued_qr_code_id)
        return {"order": order, "pet": pet, "qr_code": code, "revoked_codes": []}

    revoked, new_code = registry.revoke_and_replace(int(pet.id), int(order.id))
    order.issued_qr_code_id = new_code.id
    db.session.commit()
    user = db.session.get(User, order.user_id)
    _send_order_email(user, user.email if user else None, order, pet.pet_name, order.total_cost_euro)
    return {"order": order, "pet": pet, "qr_code": new_code, "revoked_codes": revoked}


def _provision_guest(order: PetTagOrder) -> dict:
    """Guest orders only become pets when an account with the same email exists."""
    user = User.query.filter(func.lower(User.email) == order.email.lower()).first()
    if user is None:
        _send_order_email(None, order.email, order, order.pet_name, order.price)
        return {"order": order, "pet": None, "qr_code": None, "revoked_codes": []}
    pet, created = _pet_for_order(int(user.id), int(order.id), "PetTagOrder", order.pet_name)
    code = _current_code(pet)
    if code is None:
        code = registry.claim_available_code(
            user_id=int(user.id), pet_id=int(pet.id), order_id=int(order.id), order_type="PetTagOrder"
        )
    if created:
        _send_order_email(user, order.email, order, pet.pet_name, order.price)
    return {"order": order, "pet": pet, "qr_code": code, "revoked_codes": []}


def order_to_dict(order: UserPetTagOrder) -> dict:
    return {
        "id": int(order.id),
        "userId": int(order.user_id),
        "quantity": int(order.quantity or 1),
        "petName": order.pet_name,
        "totalCostEuro": float(order.total_cost_euro or 0),
        "tagColor": order.tag_color,
        "phone": order.phone,
        "street": order.street,
        "city": order.city,
        "state": order.state,
        "zipCode": order.zip_code,
        "country": order.country,
        "status": order.status,
        "paymentIntentId": order.payment_intent_id,
        "paymentStatus": order.payment_status,
        "isReplacement": bool(order.is_replacement),
        "issuedQrCodeId": int(order.issued_qr_code_id) if order.issued_qr_code_id is not None else None,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
    }


def guest_order_to_dict(order: PetTagOrder) -> dict:
    return {
        "id": int(order.id),
        "email": order.email,
        "name": order.name,
        "petName": order.pet_name,
        "quantity": int(order.quantity or 1),
        "subscriptionType": order.subscription_type,
        "price": float(order.price or 0),
        "phone": order.phone,
        "shippingAddress": order.shipping_address,
        "status": order.status,
        "paymentIntentId": order.payment_intent_id,
        "paymentStatus": order.payment_status,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
    }
