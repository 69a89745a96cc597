from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func

from ...extensions import db
from ...errors import ValidationError
from ...models.referral import REFERRAL_POINTS, Referral
from ...models.user import User, generate_referral_code
from .rewards import evaluate_reward_tiers

logger = logging.getLogger(__name__)


def ensure_referral_code(user: User) -> str:
    if not user.referral_code:
        code = generate_referral_code()
        while User.query.filter_by(referral_code=code).first() is not None:
            code = generate_referral_code()
        user.referral_code = code
    return user.referral_code


def find_referrer(code: str | None) -> User | None:
    """Resolve a signup referral code. Empty codes are allowed; unknown codes are rejected."""
    code = (code or "").strip().upper()
    if not code:
        return None
    referrer = User.query.filter_by(referral_code=code).first()
    if referrer is None:
        raise ValidationError("Invalid referral code")
    return referrer


def record_referral(referrer: User, new_user: User) -> Referral | None:
    """Credit both accounts once per referred user, then re-check both reward tiers."""
    if referrer.id == new_user.id:
        raise ValidationError("You cannot refer yourself")
    if Referral.query.filter_by(referred_user_id=new_user.id).first() is not None:
        return None
    referral = Referral(
        referrer_id=referrer.id,
        referred_user_id=new_user.id,
        points_awarded=REFERRAL_POINTS,
        referral_code_used=referrer.referral_code,
    )
    referrer.loyalty_points = int(referrer.loyalty_points or 0) + REFERRAL_POINTS
    new_user.loyalty_points = int(new_user.loyalty_points or 0) + REFERRAL_POINTS
    db.session.add(referral)
    db.session.commit()
    logger.info("User %s referred user %s", referrer.id, new_user.id)
    evaluate_reward_tiers(int(referrer.id))
    evaluate_reward_tiers(int(new_user.id))
    return referral


def referral_link(user: User) -> str:
    base = (current_app.config.get("FRONTEND_URL") or "").rstrip("/")
    return f"{base}/signup?ref={user.referral_code}"


def referral_stats(user_id: int) -> dict:
    count, points = (
        db.session.query(func.count(Referral.id), func.coalesce(func.sum(Referral.points_awarded), 0))
        .filter(Referral.referrer_id == user_id)
        .one()
    )
    return {"totalReferrals": int(count or 0), "pointsEarned": int(points or 0)}
