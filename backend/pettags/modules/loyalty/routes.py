from flask import Blueprint, jsonify

from ...extensions import db
from ...security import current_user, login_required
from .referrals import ensure_referral_code, referral_link, referral_stats
from .rewards import redemption_to_dict, reward_summary, visible_redemptions

bp = Blueprint("loyalty", __name__, url_prefix="/loyalty")


@bp.get("")
@login_required
def get_loyalty():
    user = current_user()
    summary = reward_summary(user)
    if not user.referral_code:
        ensure_referral_code(user)
        db.session.commit()
    summary.update({
        "referralCode": user.referral_code,
        "referralLink": referral_link(user),
        "referrals": referral_stats(user.id),
    })
    return jsonify(summary)


@bp.get("/redemptions")
@login_required
def list_redemptions():
    rows = visible_redemptions(current_user().id)
    return jsonify({"redemptions": [redemption_to_dict(r) for r in rows]})
