from datetime import datetime

from ..extensions import db
from .enums import id_type, order_type_enum


class Pet(db.Model):
    __tablename__ = "pets"

    id = db.Column(id_type, primary_key=True)
    user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # Order that produced this pet; repointed when a replacement tag is issued
    user_pet_tag_order_id = db.Column(db.BigInteger, nullable=True, index=True)
    order_type = db.Column(order_type_enum, nullable=False, default="UserPetTagOrder", server_default="UserPetTagOrder")
    pet_name = db.Column(db.String(120), nullable=False)
    hide_name = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    age = db.Column(db.Integer)
    breed = db.Column(db.String(120))
    medication = db.Column(db.Text)
    allergies = db.Column(db.Text)
    notes = db.Column(db.Text)
    image_url = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = db.relationship("User", back_populates="pets")
