import logging
import os
import secrets
from io import BytesIO

from flask import Blueprint, jsonify, request
from PIL import Image, UnidentifiedImageError
from sqlalchemy import or_
from werkzeug.security import check_password_hash, generate_password_hash

from ...errors import NotFoundError, ValidationError
from ...extensions import db
from ...integrations.storage.s3 import delete_file, save_file
from ...integrations.stripe import client as stripe_client
from ...models.enums import MAX_PETS_PER_USER
from ...models.order import UserPetTagOrder
from ...models.pet import Pet
from ...models.qr_code import QRCode
from ...models.referral import Referral
from ...models.reward_redemption import RewardRedemption
from ...models.subscription import Subscription
from ...models.user import User
from ...schemas.accounts import PetUpdateSchema, UserUpdateSchema
from ...security import current_user, login_required
from ..orders.provisioning import pet_count
from ..qrcodes.registry import LINKED_STATUSES, qr_code_to_dict, reset_user_codes

logger = logging.getLogger(__name__)

bp = Blueprint("users", __name__, url_prefix="/users")

IMAGE_MAX_SIZE = (800, 800)
ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


def _user_to_dict(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "phone": u.phone,
        "street": u.street,
        "city": u.city,
        "state": u.state,
        "zipCode": u.zip_code,
        "country": u.country,
        "role": u.role,
        "loyaltyPoints": int(u.loyalty_points or 0),
        "referralCode": u.referral_code,
        "lastLoginAt": u.last_login_at.isoformat() if u.last_login_at else None,
        "createdAt": u.created_at.isoformat() if u.created_at else None,
        "updatedAt": u.updated_at.isoformat() if u.updated_at else None,
    }


def _pet_to_dict(p: Pet) -> dict:
    code = QRCode.query.filter(QRCode.assigned_pet_id == p.id, QRCode.status.in_(LINKED_STATUSES)).first()
    return {
        "id": p.id,
        "userId": p.user_id,
        "orderId": p.user_pet_tag_order_id,
        "orderType": p.order_type,
        "petName": p.pet_name,
        "hideName": bool(p.hide_name),
        "age": p.age,
        "breed": p.breed,
        "medication": p.medication,
        "allergies": p.allergies,
        "notes": p.notes,
        "imageUrl": p.image_url,
        "qrCode": qr_code_to_dict(code) if code else None,
        "createdAt": p.created_at.isoformat() if p.created_at else None,
        "updatedAt": p.updated_at.isoformat() if p.updated_at else None,
    }


def _own_pet(pet_id: int) -> Pet:
    pet = Pet.query.filter_by(id=pet_id, user_id=current_user().id).first()
    if pet is None:
        raise NotFoundError("Pet not found")
    return pet


@bp.get("/me")
@login_required
def get_me():
    return jsonify({"user": _user_to_dict(current_user())})


@bp.patch("/me")
@login_required
def update_me():
    u = current_user()
    raw = request.get_json(silent=True) or {}
    data = UserUpdateSchema().load(raw)
    for field, value in data.items():
        setattr(u, field, value)

    # Password change (optional)
    current_password = raw.get("currentPassword") or None
    new_password = raw.get("newPassword") or None
    if new_password is not None:
        if not current_password:
            return jsonify({"error": "Current password is required to set a new password"}), 400
        if not u.password_hash or not check_password_hash(u.password_hash, current_password):
            return jsonify({"error": "Current password is incorrect"}), 400
        if len(new_password) < 8:
            return jsonify({"error": "New password must be at least 8 characters"}), 400
        u.password_hash = generate_password_hash(new_password)

    db.session.commit()
    return jsonify({"user": _user_to_dict(u)})


@bp.delete("/me")
@login_required
def delete_me():
    """Delete the account. Its tags go back to stock as unassigned codes."""
    u = current_user()
    uid = int(u.id)
    renewing = Subscription.query.filter(
        Subscription.user_id == uid,
        Subscription.auto_renew.is_(True),
        Subscription.stripe_subscription_id.isnot(None),
    ).all()
    for sub in renewing:
        try:
            stripe_client.cancel_subscription(sub.stripe_subscription_id)
        except stripe_client.StripeError as e:
            logger.warning("Could not cancel Stripe subscription %s: %s", sub.stripe_subscription_id, e)

    released = reset_user_codes(uid, commit=False)
    images = [p.image_url for p in Pet.query.filter_by(user_id=uid).all() if p.image_url]

    Pet.query.filter_by(user_id=uid).delete(synchronize_session=False)
    UserPetTagOrder.query.filter_by(user_id=uid).delete(synchronize_session=False)
    Subscription.query.filter_by(user_id=uid).delete(synchronize_session=False)
    RewardRedemption.query.filter_by(user_id=uid).delete(synchronize_session=False)
    Referral.query.filter(or_(Referral.referrer_id == uid, Referral.referred_user_id == uid)).delete(synchronize_session=False)
    db.session.delete(u)
    db.session.commit()

    for url in images:
        delete_file(url)
    logger.info("Deleted user %s and released %s QR codes", uid, released)
    return jsonify({"deleted": True, "releasedQrCodes": released})


@bp.get("/me/pets")
@login_required
def list_pets():
    pets = Pet.query.filter_by(user_id=current_user().id).order_by(Pet.id).all()
    return jsonify({"pets": [_pet_to_dict(p) for p in pets]})


@bp.get("/me/pet-count")
@login_required
def get_pet_count():
    count = pet_count(current_user().id)
    return jsonify({"count": count, "maxPets": MAX_PETS_PER_USER, "canAddMore": count < MAX_PETS_PER_USER})


@bp.get("/me/pets/<int:pet_id>")
@login_required
def get_pet(pet_id: int):
    return jsonify({"pet": _pet_to_dict(_own_pet(pet_id))})


@bp.put("/me/pets/<int:pet_id>")
@login_required
def update_pet(pet_id: int):
    pet = _own_pet(pet_id)
    data = PetUpdateSchema().load(request.get_json(silent=True) or {})
    for field, value in data.items():
        setattr(pet, field, value)
    db.session.commit()
    return jsonify({"pet": _pet_to_dict(pet)})


@bp.post("/me/pets/<int:pet_id>/image")
@login_required
def upload_pet_image(pet_id: int):
    """Multipart upload (field ``image``); stored downscaled to at most 800x800."""
    pet = _own_pet(pet_id)
    image_file = request.files.get("image")
    if not image_file or not image_file.filename:
        raise ValidationError("Image file is required")
    ext = os.path.splitext(image_file.filename)[1].lower()[:10]
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        raise ValidationError("Image must be a JPEG, PNG or WebP file")

    try:
        img = Image.open(BytesIO(image_file.read()))
        img.thumbnail(IMAGE_MAX_SIZE)
        out = BytesIO()
        if ext in (".png", ".webp"):
            img_format, content_type, ext = "PNG", "image/png", ".png"
        else:
            img_format, content_type, ext = "JPEG", "image/jpeg", ".jpg"
            img = img.convert("RGB")
        img.save(out, format=img_format, optimize=True)
    except (UnidentifiedImageError, OSError):
        raise ValidationError("Uploaded file is not a valid image")

    old_url = pet.image_url
    pet.image_url = save_file(out.getvalue(), f"pets/{pet.id}/{secrets.token_hex(16)}{ext}", content_type)
    db.session.commit()
    if old_url:
        delete_file(old_url)
    return jsonify({"pet": _pet_to_dict(pet)})
