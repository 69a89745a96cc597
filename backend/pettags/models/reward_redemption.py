from datetime import datetime

from ..extensions import db
from .enums import id_type, redemption_status_enum

TIER_1 = 1
TIER_2 = 2
TIER_1_POINTS = 1000
TIER_2_POINTS = 2000
REWARD_NAMES = {TIER_1: "Amazon Voucher", TIER_2: "Pet Gift Box"}


class RewardRedemption(db.Model):
    __tablename__ = "reward_redemptions"

    id = db.Column(id_type, primary_key=True)
    user_id = db.Column(db.BigInteger, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reward_tier = db.Column(db.Integer, nullable=False)
    points_at_redemption = db.Column(db.Integer, nullable=False)
    status = db.Column(redemption_status_enum, nullable=False, default="pending", server_default="pending")
    admin_notes = db.Column(db.Text)
    redeemed_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    shipped_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", back_populates="reward_redemptions")

    __table_args__ = (
        db.CheckConstraint("reward_tier IN (1, 2)", name="ck_reward_redemptions_tier"),
    )
