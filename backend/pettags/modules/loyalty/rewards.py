"""Loyalty reward cycles.

A cycle is Tier 1 (1000 points, never resets the balance) followed by Tier 2
(2000 points, resets the balance to 0). A cycle closes when its Tier 2
redemption is completed; only then can new redemptions be created.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ...extensions import db
from ...errors import NotFoundError, ValidationError
from ...models.reward_redemption import (
    REWARD_NAMES,
    TIER_1,
    TIER_1_POINTS,
    TIER_2,
    TIER_2_POINTS,
    RewardRedemption,
)
from ...models.user import User
from ..notifications import templates
from ..notifications.mailer import dispatch_email

logger = logging.getLogger(__name__)

REDEMPTION_STATUSES = ("pending", "shipped", "completed")
ACTIVE_STATUSES = ("pending", "shipped")
ADJUST_MODES = ("add", "set")


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _latest(user_id: int, tier: int) -> Optional[RewardRedemption]:
    return (
        RewardRedemption.query.filter_by(user_id=user_id, reward_tier=tier)
        .order_by(RewardRedemption.created_at.desc(), RewardRedemption.id.desc())
        .first()
    )


def _predates(a: RewardRedemption, b: RewardRedemption) -> bool:
    return (a.created_at, a.id) < (b.created_at, b.id)


def _create(user: User, tier: int, points: int) -> RewardRedemption:
    redemption = RewardRedemption(
        user_id=user.id,
        reward_tier=tier,
        points_at_redemption=points,
        status="pending",
        redeemed_at=datetime.utcnow(),
    )
    db.session.add(redemption)
    return redemption


def evaluate_reward_tiers(user_id: int) -> Optional[RewardRedemption]:
    """Create the redemption the current balance earns, if any. Returns the new redemption."""
    user = _get_user(user_id)
    points = int(user.loyalty_points or 0)
    latest_t2 = _latest(user.id, TIER_2)
    created = None

    if points >= TIER_2_POINTS:
        if latest_t2 is None or latest_t2.status == "completed":
            created = _create(user, TIER_2, TIER_2_POINTS)
            user.loyalty_points = 0
    elif points >= TIER_1_POINTS:
        latest_t1 = _latest(user.id, TIER_1)
        closed_cycle = (
            latest_t1 is not None
            and latest_t2 is not None
            and latest_t2.status == "completed"
            and _predates(latest_t1, latest_t2)
        )
        if latest_t1 is None or closed_cycle:
            created = _create(user, TIER_1, TIER_1_POINTS)

    if created is None:
        return None
    db.session.commit()
    logger.info("User %s earned tier %s reward (redemption %s)", user.id, created.reward_tier, created.id)
    subject, html = templates.reward_unlocked(
        customer_name=user.full_name,
        reward_name=REWARD_NAMES[created.reward_tier],
        points=created.points_at_redemption,
    )
    dispatch_email(user.email, subject, html)
    return created


def adjust_points(user_id: int, value, mode: str = "add") -> tuple[User, Optional[RewardRedemption]]:
    if mode not in ADJUST_MODES:
        raise ValidationError('Action must be "set" or "add"')
    try:
        amount = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Points must be a non-negative number")
    if amount < 0:
        raise ValidationError("Points must be a non-negative number")
    user = _get_user(user_id)
    new_total = amount if mode == "set" else int(user.loyalty_points or 0) + amount
    if new_total < 0:
        raise ValidationError("Loyalty points cannot be negative")
    user.loyalty_points = new_total
    db.session.commit()
    created = evaluate_reward_tiers(user.id)
    return user, created


def current_cycle(user_id: int) -> list[RewardRedemption]:
    """Redemptions created after the latest completed Tier 2, oldest first."""
    rows = (
        RewardRedemption.query.filter_by(user_id=user_id)
        .order_by(RewardRedemption.created_at.asc(), RewardRedemption.id.asc())
        .all()
    )
    start = 0
    for i, r in enumerate(rows):
        if r.reward_tier == TIER_2 and r.status == "completed":
            start = i + 1
    return rows[start:]


def _reward_entry(tier: int, redemption: Optional[RewardRedemption], points: int) -> dict:
    required = TIER_2_POINTS if tier == TIER_2 else TIER_1_POINTS
    return {
        "tier": tier,
        "name": REWARD_NAMES[tier],
        "pointsRequired": required,
        "pointsNeeded": max(0, required - points),
        "status": redemption.status if redemption else "eligible",
        "redemptionId": int(redemption.id) if redemption else None,
    }


def reward_summary(user: User) -> dict:
    points = int(user.loyalty_points or 0)
    cycle = current_cycle(user.id)
    t2 = next((r for r in reversed(cycle) if r.reward_tier == TIER_2), None)
    t1 = next((r for r in reversed(cycle) if r.reward_tier == TIER_1), None)

    current = None
    upcoming = None
    if (t2 is not None and t2.status in ACTIVE_STATUSES) or points >= TIER_2_POINTS:
        current = _reward_entry(TIER_2, t2, points)
        upcoming = _reward_entry(TIER_1, None, points)
    elif points >= TIER_1_POINTS or t1 is not None:
        current = _reward_entry(TIER_1, t1, points)
        upcoming = _reward_entry(TIER_2, None, points)
    else:
        upcoming = _reward_entry(TIER_1, None, points)
    return {
        "loyaltyPoints": points,
        "currentReward": current,
        "nextReward": upcoming,
        "redemptions": [redemption_to_dict(r) for r in reversed(cycle)],
    }


def visible_redemptions(user_id: int, limit: int = 10) -> list[RewardRedemption]:
    """Open redemptions plus anything completed in the current cycle, newest first."""
    cycle_ids = {r.id for r in current_cycle(user_id)}
    rows = (
        RewardRedemption.query.filter_by(user_id=user_id)
        .order_by(RewardRedemption.created_at.desc(), RewardRedemption.id.desc())
        .all()
    )
    out = [r for r in rows if r.status in ACTIVE_STATUSES or (r.status == "completed" and r.id in cycle_ids)]
    return out[:limit]


def pending_redemptions() -> list[RewardRedemption]:
    return (
        RewardRedemption.query.filter(RewardRedemption.status.in_(ACTIVE_STATUSES))
        .order_by(RewardRedemption.created_at.asc(), RewardRedemption.id.asc())
        .all()
    )


def update_redemption_status(redemption_id: int, status: str, admin_notes: str | None = None) -> RewardRedemption:
    if status not in REDEMPTION_STATUSES:
        raise ValidationError("Status must be pending, shipped or completed")
    redemption = db.session.get(RewardRedemption, redemption_id)
    if redemption is None:
        raise NotFoundError("Reward redemption not found")
    now = datetime.utcnow()
    redemption.status = status
    if status == "shipped" and redemption.shipped_at is None:
        redemption.shipped_at = now
    if status == "completed":
        redemption.shipped_at = redemption.shipped_at or now
        redemption.completed_at = now
    if admin_notes is not None:
        redemption.admin_notes = admin_notes
    db.session.commit()
    # Completing a Tier 2 opens the next cycle; the balance may already qualify
    if status == "completed" and redemption.reward_tier == TIER_2:
        evaluate_reward_tiers(int(redemption.user_id))
    return redemption


def redemption_to_dict(r: RewardRedemption) -> dict:
    return {
        "id": int(r.id),
        "userId": int(r.user_id),
        "rewardTier": int(r.reward_tier),
        "rewardName": REWARD_NAMES.get(int(r.reward_tier)),
        "pointsAtRedemption": int(r.points_at_redemption),
        "status": r.status,
        "adminNotes": r.admin_notes,
        "redeemedAt": r.redeemed_at.isoformat() if r.redeemed_at else None,
        "shippedAt": r.shipped_at.isoformat() if r.shipped_at else None,
        "completedAt": r.completed_at.isoformat() if r.completed_at else None,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    }
