from datetime import datetime

from ..extensions import db
from .enums import id_type, order_type_enum, qr_status_enum


class QRCode(db.Model):
    __tablename__ = "qr_codes"

    id = db.Column(id_type, primary_key=True)
    code = db.Column(db.String(120), unique=True, nullable=False)
    image_url = db.Column(db.Text)
    status = db.Column(qr_status_enum, nullable=False, default="unassigned", server_default="unassigned", index=True)
    # has_given: handed to a customer; has_verified: covered by a paid subscription
    has_given = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    has_verified = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    assigned_user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="SET NULL"), index=True)
    assigned_order_id = db.Column(db.BigInteger, nullable=True)
    # Order ids come from two tables; the type says which one assigned_order_id points into
    assigned_order_type = db.Column(order_type_enum, nullable=True)
    assigned_pet_id = db.Column(db.BigInteger, db.ForeignKey("pets.id", ondelete="SET NULL"), index=True)
    scanned_count = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    last_scanned_at = db.Column(db.DateTime)
    is_downloaded = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    downloaded_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = db.relationship("User", foreign_keys=[assigned_user_id])
    pet = db.relationship("Pet", foreign_keys=[assigned_pet_id])


# Column values written when a code goes back to stock (revocation, account deletion)
UNASSIGNED_VALUES = {
    "status": "unassigned",
    "has_given": False,
    "has_verified": False,
    "assigned_user_id": None,
    "assigned_order_id": None,
    "assigned_order_type": None,
    "assigned_pet_id": None,
}
