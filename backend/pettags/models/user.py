import secrets
import string
from datetime import datetime

from ..extensions import db
from .enums import id_type, role_enum

_REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code(length: int = 8) -> str:
    return "".join(secrets.choice(_REFERRAL_ALPHABET) for _ in range(length))


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(id_type, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)
    phone = db.Column(db.String(40), nullable=True)
    # Postal address, used as the default shipping address for orders
    street = db.Column(db.String(255))
    city = db.Column(db.String(120))
    state = db.Column(db.String(120))
    zip_code = db.Column(db.String(40))
    country = db.Column(db.String(120))
    role = db.Column(role_enum, nullable=False, default="user", server_default="user")
    password_hash = db.Column(db.Text)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    referral_code = db.Column(db.String(8), unique=True, nullable=True)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    pets = db.relationship("Pet", back_populates="owner", lazy=True, order_by="Pet.id")
    subscriptions = db.relationship("Subscription", back_populates="user", lazy=True)
    reward_redemptions = db.relationship("RewardRedemption", back_populates="user", lazy=True)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()
