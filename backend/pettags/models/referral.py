from datetime import datetime

from ..extensions import db
from .enums import id_type

REFERRAL_POINTS = 100


class Referral(db.Model):
    __tablename__ = "referrals"

    id = db.Column(id_type, primary_key=True)
    referrer_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # A user can only ever be referred once
    referred_user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    points_awarded = db.Column(db.Integer, nullable=False, default=REFERRAL_POINTS)
    referral_code_used = db.Column(db.String(8), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    referrer = db.relationship("User", foreign_keys=[referrer_id])
    referred_user = db.relationship("User", foreign_keys=[referred_user_id])
