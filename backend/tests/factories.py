"""Row builders shared by the test modules. All of them commit."""
from datetime import datetime, timedelta
from decimal import Decimal

from werkzeug.security import generate_password_hash

from pettags.extensions import db
from pettags.models.pet import Pet
from pettags.models.qr_code import QRCode
from pettags.models.subscription import Subscription
from pettags.models.user import User

DEFAULT_PASSWORD = "secret123"


def make_user(email="owner@example.com", *, role="user", points=0, phone="+447700900123", **extra):
    user = User(
        email=email,
        first_name=extra.pop("first_name", "Olive"),
        last_name=extra.pop("last_name", "Owner"),
        phone=phone,
        role=role,
        loyalty_points=points,
        password_hash=generate_password_hash(DEFAULT_PASSWORD),
        **extra,
    )
    db.session.add(user)
    db.session.commit()
    return user


def make_pet(user, name="Rex", *, order_id=None, order_type="UserPetTagOrder", **extra):
    pet = Pet(user_id=user.id, pet_name=name, user_pet_tag_order_id=order_id, order_type=order_type, **extra)
    db.session.add(pet)
    db.session.commit()
    return pet


def make_code(code, *, user=None, pet=None, status=None, order_id=None, order_type=None):
    """A code in stock, or linked to ``user``/``pet`` when given (assigned by default)."""
    row = QRCode(code=code)
    if user is not None:
        row.assigned_user_id = user.id
        row.assigned_pet_id = pet.id if pet is not None else None
        row.assigned_order_id = order_id
        if order_id is not None:
            row.assigned_order_type = order_type or "UserPetTagOrder"
        row.has_given = True
        row.status = status or "assigned"
        row.has_verified = row.status == "verified"
    elif status:
        row.status = status
    db.session.add(row)
    db.session.commit()
    return row


def make_codes(count, prefix="QR-"):
    return [make_code(f"{prefix}{i:04d}") for i in range(1, count + 1)]


def make_subscription(user, sub_type="yearly", *, amount="28.99", days=365, status="active", **extra):
    now = datetime.utcnow()
    sub = Subscription(
        user_id=user.id,
        type=sub_type,
        status=status,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=days),
        amount_paid=Decimal(amount),
        currency="gbp",
        **extra,
    )
    db.session.add(sub)
    db.session.commit()
    return sub


def as_user(user):
    """Request headers that authenticate as ``user`` (debug header shortcut)."""
    return {"X-User-Id": str(user.id)}
