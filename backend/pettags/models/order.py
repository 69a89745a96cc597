from datetime import datetime

from ..extensions import db
from .enums import id_type, order_status_enum, payment_status_enum, subscription_type_enum


class UserPetTagOrder(db.Model):
    """Tag order placed by a signed-in user. Replacement orders reuse an existing pet."""

    __tablename__ = "user_pet_tag_orders"

    id = db.Column(id_type, primary_key=True)
    user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    pet_name = db.Column(db.String(120), nullable=False)
    total_cost_euro = db.Column(db.Numeric(10, 2), nullable=False)
    tag_color = db.Column(db.String(40))
    phone = db.Column(db.String(40))
    street = db.Column(db.String(255))
    city = db.Column(db.String(120))
    state = db.Column(db.String(120))
    zip_code = db.Column(db.String(40))
    country = db.Column(db.String(120))
    status = db.Column(order_status_enum, nullable=False, default="pending", server_default="pending")
    payment_intent_id = db.Column(db.String(255), index=True)
    payment_status = db.Column(payment_status_enum, nullable=False, default="pending", server_default="pending")
    is_replacement = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    # Replacement orders may name the pet explicitly instead of matching by name
    replacement_pet_id = db.Column(db.BigInteger, nullable=True)
    # Code issued once the replacement swap has run; guards repeated confirmations
    issued_qr_code_id = db.Column(db.BigInteger, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User")

    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_user_pet_tag_orders_quantity"),
        db.CheckConstraint("total_cost_euro > 0", name="ck_user_pet_tag_orders_total"),
    )


class PetTagOrder(db.Model):
    """Guest checkout order, keyed by email rather than an account."""

    __tablename__ = "pet_tag_orders"

    id = db.Column(id_type, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    pet_name = db.Column(db.String(120), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    subscription_type = db.Column(subscription_type_enum, nullable=False, default="monthly")
    price = db.Column(db.Numeric(10, 2), nullable=False)
    phone = db.Column(db.String(40))
    shipping_address = db.Column(db.JSON)
    status = db.Column(order_status_enum, nullable=False, default="pending", server_default="pending")
    payment_intent_id = db.Column(db.String(255), index=True)
    payment_status = db.Column(payment_status_enum, nullable=False, default="pending", server_default="pending")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
