"""QR code registry: tag lifecycle, owner/pet linkage and scan telemetry.

Lifecycle: ``unassigned`` -> ``assigned`` (linked to a user, usually a pet/order)
-> ``verified`` (covered by the owner's paid subscription). Codes return to
``unassigned`` when replaced or when the owning account is deleted.

Every transition out of ``unassigned`` is a conditional UPDATE on the current
status so two requests can never claim the same physical tag.
"""
from __future__ import annotations

import io
import logging
import secrets
import string
import time
from datetime import datetime
from typing import Iterable, Optional

import qrcode
from flask import current_app
from sqlalchemy import select, update

from ...extensions import db
from ...errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ...integrations.storage.s3 import save_file
from ...models.enums import MAX_CODES_PER_SUBSCRIPTION
from ...models.order import PetTagOrder, UserPetTagOrder
from ...models.pet import Pet
from ...models.qr_code import QRCode, UNASSIGNED_VALUES
from ...models.subscription import Subscription
from ...models.user import User
from ..subscriptions import ledger

logger = logging.getLogger(__name__)

LINKED_STATUSES = ("assigned", "verified", "lost")
MAX_BATCH = 500
_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_code() -> str:
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    return f"QR-{int(time.time() * 1000)}-{suffix}"


def scan_target_url(code: str) -> str:
    """URL printed inside the QR image; the web app calls the scan endpoint from there."""
    base = current_app.config.get("QR_URL") or current_app.config.get("FRONTEND_URL") or ""
    return f"{base.rstrip('/')}/qr/{code}"


def render_png(code: str, box_size: int = 10) -> bytes:
    qr = qrcode.QRCode(version=None, error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=box_size, border=2)
    qr.add_data(scan_target_url(code))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def create_codes(count: int, *, store_images: bool = True) -> list[QRCode]:
    """Generate ``count`` fresh unassigned codes, rendering and storing a PNG for each."""
    if count < 1 or count > MAX_BATCH:
        raise ValidationError(f"Count must be between 1 and {MAX_BATCH}")
    seen: set[str] = set()
    rows: list[QRCode] = []
    for _ in range(count):
        code = generate_code()
        while code in seen or QRCode.query.filter_by(code=code).first() is not None:
            code = generate_code()
        seen.add(code)
        image_url = None
        if store_images:
            image_url = save_file(render_png(code), f"qr-codes/qr-{code}.png", "image/png")
        row = QRCode(code=code, image_url=image_url)
        db.session.add(row)
        rows.append(row)
    db.session.commit()
    logger.info("Generated %d QR codes", len(rows))
    return rows


def get_code(code: str) -> QRCode:
    row = QRCode.query.filter_by(code=code).first()
    if row is None:
        raise NotFoundError("QR code not found")
    return row


def get_code_by_id(qr_code_id: int) -> QRCode:
    row = db.session.get(QRCode, qr_code_id)
    if row is None:
        raise NotFoundError("QR code not found")
    return row


def verified_count(user_id: int) -> int:
    return QRCode.query.filter_by(assigned_user_id=user_id, status="verified").count()


def available_count() -> int:
    return QRCode.query.filter_by(status="unassigned", has_given=False).count()


def coverage_for_code(row: QRCode) -> Optional[Subscription]:
    """Active paid subscription of the code's owner, preferring the legacy per-code link."""
    if row.assigned_user_id is None:
        return None
    now = datetime.utcnow()
    linked = (
        Subscription.query.filter(
            Subscription.qr_code_id == row.id,
            Subscription.user_id == row.assigned_user_id,
            Subscription.status == "active",
            Subscription.end_date > now,
            Subscription.amount_paid > 0,
        )
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )
    if linked is not None:
        return linked
    _, sub = ledger.has_active_coverage(int(row.assigned_user_id))
    return sub


def resolve_pet(row: QRCode) -> Optional[Pet]:
    """Pet shown for a scanned code: direct link, else the pet of the assigned order, else the owner's first pet."""
    if row.assigned_pet_id is not None:
        pet = db.session.get(Pet, row.assigned_pet_id)
        if pet is not None:
            return pet
    if row.assigned_order_id is not None:
        pet = Pet.query.filter_by(
            user_id=row.assigned_user_id,
            user_pet_tag_order_id=row.assigned_order_id,
            order_type=row.assigned_order_type or "UserPetTagOrder",
        ).first()
        if pet is not None:
            # Heal the missing link so later scans take the direct path
            row.assigned_pet_id = pet.id
            db.session.commit()
            return pet
    if row.assigned_user_id is not None:
        return Pet.query.filter_by(user_id=row.assigned_user_id).order_by(Pet.id).first()
    return None


def _needs_verification(row: QRCode, reason: str) -> dict:
    return {
        "action": "redirect_to_verification",
        "redirectUrl": f"/qr/verify/{row.code}",
        "reason": reason,
        "petId": None,
    }


def scan(code: str) -> dict:
    """Record a scan and decide where the scanner goes. Only an unknown code is an error."""
    row = get_code(code)
    db.session.execute(
        update(QRCode)
        .where(QRCode.id == row.id)
        .values(scanned_count=QRCode.scanned_count + 1, last_scanned_at=datetime.utcnow())
    )
    db.session.commit()
    db.session.refresh(row)

    if row.assigned_user_id is None or row.status == "unassigned":
        decision = _needs_verification(row, "unassigned")
    elif row.has_verified and row.status == "verified":
        if coverage_for_code(row) is None:
            decision = _needs_verification(row, "subscription_expired")
        else:
            pet = resolve_pet(row)
            if pet is None:
                logger.warning("Verified QR code %s has no resolvable pet", row.code)
                decision = _needs_verification(row, "pet_not_found")
            else:
                decision = {
                    "action": "redirect_to_profile",
                    "redirectUrl": f"/profile/{pet.id}",
                    "reason": "verified",
                    "petId": int(pet.id),
                }
    else:
        decision = _needs_verification(row, "not_verified")
    decision.update({"code": row.code, "status": row.status, "scannedCount": int(row.scanned_count or 0)})
    return decision


def _linked_pet_ids():
    return select(QRCode.assigned_pet_id).where(
        QRCode.assigned_pet_id.isnot(None), QRCode.status.in_(LINKED_STATUSES)
    )


def pick_unlinked_pet(user_id: int, pet_id: int | None = None) -> Optional[Pet]:
    if pet_id:
        pet = Pet.query.filter_by(id=pet_id, user_id=user_id).first()
        if pet is not None and not QRCode.query.filter(
            QRCode.assigned_pet_id == pet.id, QRCode.status.in_(LINKED_STATUSES)
        ).first():
            return pet
    return (
        Pet.query.filter(Pet.user_id == user_id, Pet.id.not_in(_linked_pet_ids()))
        .order_by(Pet.id)
        .first()
    )


def assign_to_user(row: QRCode, user_id: int, pet_id: int | None = None) -> QRCode:
    """Claim an unassigned code for ``user_id``, linking the preferred pet without a tag."""
    pet = pick_unlinked_pet(user_id, pet_id)
    values = {
        "status": "assigned",
        "has_given": True,
        "assigned_user_id": user_id,
        "updated_at": datetime.utcnow(),
    }
    if pet is not None:
        values["assigned_pet_id"] = pet.id
        values["assigned_order_id"] = pet.user_pet_tag_order_id
        values["assigned_order_type"] = pet.order_type if pet.user_pet_tag_order_id is not None else None
    res = db.session.execute(
        update(QRCode).where(QRCode.id == row.id, QRCode.status == "unassigned").values(**values)
    )
    db.session.commit()
    db.session.refresh(row)
    if res.rowcount != 1 and row.assigned_user_id != user_id:
        if row.assigned_user_id is None:
            raise ConflictError("QR code is not available for assignment")
        raise ConflictError("QR code is already assigned to another user", code="QR_CODE_ALREADY_ASSIGNED")
    return row


def check_verified_cap(user_id: int) -> int:
    """Raise QR_CODE_LIMIT_EXCEEDED when ``user_id`` already has the maximum verified codes."""
    count = verified_count(user_id)
    if count >= MAX_CODES_PER_SUBSCRIPTION:
        raise ConflictError(
            "Maximum number of verified QR codes reached for this subscription",
            code="QR_CODE_LIMIT_EXCEEDED",
            verifiedCount=count,
            maxAllowed=MAX_CODES_PER_SUBSCRIPTION,
        )
    return count


def mark_verified_within_cap(row: QRCode, user_id: int) -> QRCode:
    """Mark the code verified unless the owner already has the maximum verified codes.

    The owner row is locked while counting so concurrent verifications cannot both
    slip under the cap.
    """
    db.session.query(User).filter(User.id == user_id).with_for_update().first()
    try:
        check_verified_cap(user_id)
    except ConflictError:
        db.session.rollback()
        raise
    res = db.session.execute(
        update(QRCode)
        .where(
            QRCode.id == row.id,
            QRCode.assigned_user_id == user_id,
            QRCode.status.in_(LINKED_STATUSES),
        )
        .values(status="verified", has_verified=True, updated_at=datetime.utcnow())
    )
    db.session.commit()
    db.session.refresh(row)
    if res.rowcount != 1:
        raise ConflictError("QR code is no longer assigned to this user")
    return row


def verify_or_auto_verify(user_id: int, qr_code_id: int, pet_id: int | None = None) -> dict:
    """Bind a tag to ``user_id`` and verify it against existing coverage.

    Returns a dict with ``qr_code``, ``subscription``, ``verified``, ``already_verified``
    and ``payment_required``. When no coverage exists the code stays ``assigned`` and
    the caller must start a payment.
    """
    row = get_code_by_id(qr_code_id)
    if row.assigned_user_id is not None and int(row.assigned_user_id) != int(user_id):
        raise ConflictError("QR code is already assigned to another user", code="QR_CODE_ALREADY_ASSIGNED")
    covered, sub = ledger.has_active_coverage(user_id)
    if row.assigned_user_id is None or row.status == "unassigned":
        if covered:
            # A code that cannot be verified stays in stock
            check_verified_cap(user_id)
        row = assign_to_user(row, user_id, pet_id)

    if row.status == "verified" and row.has_verified:
        return {"qr_code": row, "subscription": sub, "verified": True, "already_verified": True, "payment_required": False}
    if not covered:
        return {"qr_code": row, "subscription": None, "verified": False, "already_verified": False, "payment_required": True}

    mark_verified_within_cap(row, user_id)
    logger.info("QR code %s verified for user %s using subscription %s", row.code, user_id, sub.id)
    return {"qr_code": row, "subscription": sub, "verified": True, "already_verified": False, "payment_required": False}


def claim_available_code(
    *,
    user_id: int,
    pet_id: int | None,
    order_id: int | None,
    order_type: str = "UserPetTagOrder",
    exclude_ids: Iterable[int] = (),
) -> Optional[QRCode]:
    """Atomically assign any never-issued unassigned code. Returns None when stock is exhausted."""
    exclude = [int(i) for i in exclude_ids]
    for _ in range(3):
        q = QRCode.query.filter(QRCode.status == "unassigned", QRCode.has_given.is_(False))
        if exclude:
            q = q.filter(QRCode.id.not_in(exclude))
        candidates = q.order_by(QRCode.id).limit(10).all()
        if not candidates:
            break
        for cand in candidates:
            res = db.session.execute(
                update(QRCode)
                .where(QRCode.id == cand.id, QRCode.status == "unassigned")
                .values(
                    status="assigned",
                    has_given=True,
                    has_verified=False,
                    assigned_user_id=user_id,
                    assigned_pet_id=pet_id,
                    assigned_order_id=order_id,
                    assigned_order_type=order_type if order_id is not None else None,
                    updated_at=datetime.utcnow(),
                )
            )
            if res.rowcount == 1:
                db.session.commit()
                db.session.refresh(cand)
                return cand
        db.session.commit()
    logger.warning("No unassigned QR codes available for user %s", user_id)
    return None


def revoke_and_replace(pet_id: int, new_order_id: int) -> tuple[list[str], QRCode]:
    """Swap the pet's current tag for a different one from stock.

    The new code is claimed first (excluding the old ones) so a pet is never left without
    a tag when stock is empty. Returns (revoked codes, new code).
    """
    pet = db.session.get(Pet, pet_id)
    if pet is None:
        raise NotFoundError("Pet not found")
    current = QRCode.query.filter(
        QRCode.assigned_pet_id == pet.id, QRCode.status.in_(LINKED_STATUSES)
    ).all()
    old_ids = [int(c.id) for c in current]
    old_codes = [c.code for c in current]

    new_row = claim_available_code(user_id=int(pet.user_id), pet_id=int(pet.id), order_id=new_order_id, exclude_ids=old_ids)
    if new_row is None:
        raise ConflictError("No QR codes available for replacement")

    if old_ids:
        db.session.execute(
            update(QRCode)
            .where(QRCode.id.in_(old_ids))
            .values(**UNASSIGNED_VALUES, updated_at=datetime.utcnow())
        )
    pet.user_pet_tag_order_id = new_order_id
    pet.order_type = "UserPetTagOrder"
    db.session.commit()
    logger.info("Replaced tag(s) %s with %s for pet %s", old_codes, new_row.code, pet.id)
    return old_codes, new_row


def reset_user_codes(user_id: int, *, commit: bool = True) -> int:
    """Return all of a user's codes to stock, clearing telemetry and download flags."""
    res = db.session.execute(
        update(QRCode)
        .where(QRCode.assigned_user_id == user_id)
        .values(
            **UNASSIGNED_VALUES,
            scanned_count=0,
            last_scanned_at=None,
            is_downloaded=False,
            downloaded_at=None,
            updated_at=datetime.utcnow(),
        )
    )
    if commit:
        db.session.commit()
    return int(res.rowcount or 0)


def verification_details(code: str, viewer_id: int | None = None) -> dict:
    row = get_code(code)
    is_verified = bool(row.has_verified and row.status == "verified")
    sub = coverage_for_code(row) if is_verified else None
    details = {
        "qrCode": qr_code_to_dict(row),
        "isVerified": is_verified,
        "hasActiveSubscription": sub is not None,
        "requiresLogin": viewer_id is None,
        "maxQRCodes": MAX_CODES_PER_SUBSCRIPTION,
        "verifiedQRCodesCount": 0,
        "canAutoVerify": False,
        "isOwner": viewer_id is not None and row.assigned_user_id is not None and int(row.assigned_user_id) == int(viewer_id),
    }
    if viewer_id is not None:
        covered, viewer_sub = ledger.has_active_coverage(viewer_id)
        count = verified_count(viewer_id)
        free = row.assigned_user_id is None or int(row.assigned_user_id) == int(viewer_id)
        details["verifiedQRCodesCount"] = count
        details["viewerHasActiveSubscription"] = covered
        details["canAutoVerify"] = bool(covered and free and not is_verified and count < MAX_CODES_PER_SUBSCRIPTION)
        if viewer_sub is not None and not details["hasActiveSubscription"]:
            details["subscription"] = ledger.subscription_to_dict(viewer_sub)
    if sub is not None:
        details["subscription"] = ledger.subscription_to_dict(sub)
    return details


def _mask_street(street: str | None) -> str:
    return f"***{street[-4:]}" if street else "Hidden"


def public_pet_profile(pet_id: int) -> dict:
    """What a finder sees after scanning. Requires a verified tag and live coverage."""
    pet = db.session.get(Pet, pet_id)
    if pet is None:
        raise NotFoundError("Pet not found")
    row = QRCode.query.filter_by(assigned_pet_id=pet.id, has_verified=True, status="verified").first()
    if row is None:
        raise NotFoundError("Pet profile not accessible")
    if coverage_for_code(row) is None:
        raise ForbiddenError("Subscription expired")
    owner = pet.owner
    tag_color = None
    if pet.user_pet_tag_order_id is not None and pet.order_type == "UserPetTagOrder":
        order = db.session.get(UserPetTagOrder, pet.user_pet_tag_order_id)
        tag_color = order.tag_color if order else None
    return {
        "id": int(pet.id),
        "petName": "Pet" if pet.hide_name else pet.pet_name,
        "breed": pet.breed or "Mixed Breed",
        "age": pet.age,
        "medication": pet.medication or "None",
        "allergies": pet.allergies or "None",
        "notes": pet.notes or "None",
        "imageUrl": pet.image_url,
        "tagColor": tag_color or "blue",
        "owner": {
            "name": owner.full_name if owner else "Pet Owner",
            "address": {
                "street": _mask_street(owner.street if owner else None),
                "city": (owner.city if owner else None) or "Unknown",
                "state": (owner.state if owner else None) or "Unknown",
                "zipCode": (owner.zip_code if owner else None) or "Unknown",
                "country": (owner.country if owner else None) or "UK",
            },
            "hasContactInfo": bool(owner and (owner.email or owner.phone)),
        },
        "lastScannedAt": row.last_scanned_at.isoformat() if row.last_scanned_at else None,
        "scannedCount": int(row.scanned_count or 0),
    }


def owner_phone_for_pet(pet: Pet) -> tuple[Optional[str], str]:
    """Contact number for a pet's owner: the order's phone, else the account phone."""
    phone = None
    name = "Pet Owner"
    if pet.user_pet_tag_order_id is not None:
        if pet.order_type == "UserPetTagOrder":
            order = db.session.get(UserPetTagOrder, pet.user_pet_tag_order_id)
            if order is not None:
                phone = order.phone
        elif pet.order_type == "PetTagOrder":
            guest = db.session.get(PetTagOrder, pet.user_pet_tag_order_id)
            if guest is not None:
                phone = guest.phone
                name = guest.name or name
        else:
            raise ValueError(f"Unknown order type {pet.order_type!r}")
    owner = pet.owner
    if owner is not None:
        name = owner.full_name or name
        if not phone:
            phone = owner.phone
    return phone, name


def delete_unassigned(qr_code_id: int) -> None:
    row = get_code_by_id(qr_code_id)
    if row.status != "unassigned" or row.assigned_user_id is not None:
        raise ConflictError("Only unassigned QR codes can be deleted")
    db.session.delete(row)
    db.session.commit()


def export_unused(mark_downloaded: bool = True) -> list[QRCode]:
    """Unassigned codes not yet exported; optionally flag them as downloaded."""
    rows = (
        QRCode.query.filter(QRCode.status == "unassigned", QRCode.has_given.is_(False), QRCode.is_downloaded.is_(False))
        .order_by(QRCode.id)
        .all()
    )
    if mark_downloaded and rows:
        now = datetime.utcnow()
        for row in rows:
            row.is_downloaded = True
            row.downloaded_at = now
        db.session.commit()
    return rows


def qr_code_to_dict(row: QRCode) -> dict:
    return {
        "id": int(row.id),
        "code": row.code,
        "imageUrl": row.image_url,
        "url": scan_target_url(row.code),
        "status": row.status,
        "hasGiven": bool(row.has_given),
        "hasVerified": bool(row.has_verified),
        "assignedUserId": int(row.assigned_user_id) if row.assigned_user_id is not None else None,
        "assignedOrderId": int(row.assigned_order_id) if row.assigned_order_id is not None else None,
        "assignedOrderType": row.assigned_order_type,
        "assignedPetId": int(row.assigned_pet_id) if row.assigned_pet_id is not None else None,
        "scannedCount": int(row.scanned_count or 0),
        "lastScannedAt": row.last_scanned_at.isoformat() if row.last_scanned_at else None,
        "isDownloaded": bool(row.is_downloaded),
        "downloadedAt": row.downloaded_at.isoformat() if row.downloaded_at else None,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
    }
