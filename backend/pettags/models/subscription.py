from datetime import datetime

from ..extensions import db
from .enums import id_type, subscription_status_enum, subscription_type_enum


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(id_type, primary_key=True)
    user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # Legacy per-code link; coverage is per user
    qr_code_id = db.Column(db.BigInteger, db.ForeignKey("qr_codes.id", ondelete="SET NULL"), nullable=True)
    type = db.Column(subscription_type_enum, nullable=False)
    status = db.Column(subscription_status_enum, nullable=False, default="active", server_default="active")
    start_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    end_date = db.Column(db.DateTime, nullable=False)
    amount_paid = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="gbp", server_default="gbp")
    auto_renew = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    stripe_subscription_id = db.Column(db.String(255), index=True)
    payment_intent_id = db.Column(db.String(255), index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", back_populates="subscriptions")
