from __future__ import annotations

import logging
import re

from ...extensions import db
from ...errors import NotFoundError, UpstreamError, ValidationError
from ...integrations.twilio.client import send_message
from ...models.pet import Pet
from ...models.qr_code import QRCode
from .registry import owner_phone_for_pet

logger = logging.getLogger(__name__)

METHODS = ("sms", "whatsapp", "get-phone")
# Country prefixes accepted when a stored number lost its leading "+"
_KNOWN_PREFIXES = ("44", "92")


def normalize_phone(phone: str) -> str:
    phone = re.sub(r"[\s\-()]", "", phone or "")
    if phone.startswith("+"):
        return phone
    if phone.startswith(_KNOWN_PREFIXES):
        return "+" + phone
    raise ValidationError(f"Phone number must include a country code (e.g. +44). Found: {phone}")


def mask_phone(phone: str) -> str:
    return re.sub(r"\d(?=\d{4})", "*", phone)


def _message(pet_name: str, location_url: str, latitude=None, longitude=None, manual: bool = False) -> str:
    lines = [
        f"Good news! Someone found {pet_name} and shared their location with you.",
        f"Location: {location_url}",
    ]
    if not manual and latitude is not None and longitude is not None:
        lines.append(f"Coordinates: {latitude}, {longitude}")
    lines.append("Sent via Pet Tags")
    return "\n".join(lines)


def share_location(
    pet_id: int,
    method: str,
    location_url: str,
    *,
    latitude=None,
    longitude=None,
    is_manual: bool = False,
    pet_name: str | None = None,
) -> dict:
    """Forward a finder's location to the owner of a pet with a verified tag."""
    if method not in METHODS:
        raise ValidationError('Method must be "sms", "whatsapp" or "get-phone"')
    if not is_manual and (latitude is None or longitude is None):
        raise ValidationError("Latitude and longitude are required for GPS location")
    pet = db.session.get(Pet, pet_id)
    if pet is None:
        raise NotFoundError("Pet not found")
    if not QRCode.query.filter_by(assigned_pet_id=pet.id, has_verified=True, status="verified").first():
        raise NotFoundError("Pet profile not accessible")

    raw_phone, owner_name = owner_phone_for_pet(pet)
    if not raw_phone:
        raise NotFoundError("Pet owner phone number not found")
    phone = normalize_phone(raw_phone)

    if method == "get-phone":
        return {"phoneNumber": phone, "ownerName": owner_name}

    body = _message(pet_name or pet.pet_name, location_url, latitude, longitude, is_manual)
    try:
        msg = send_message(phone, body, channel=method)
    except RuntimeError as e:
        logger.error("Location share for pet %s via %s failed: %s", pet.id, method, e)
        raise UpstreamError(f"Failed to send {method.upper()} notification", details=str(e))
    return {"messageId": msg.get("sid"), "phoneNumber": mask_phone(phone), "ownerName": owner_name}
