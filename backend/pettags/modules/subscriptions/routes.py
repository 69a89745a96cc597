from flask import Blueprint, jsonify, request

from ...security import current_user, login_required
from ..qrcodes.registry import verified_count
from ...models.enums import MAX_CODES_PER_SUBSCRIPTION
from . import ledger

bp = Blueprint("subscriptions", __name__, url_prefix="/subscriptions")


@bp.get("")
@login_required
def list_subscriptions():
    """Active subscriptions of the caller; ``?all=true`` includes expired and cancelled ones."""
    include_all = (request.args.get("all") or "").lower() in ("1", "true", "yes")
    subs = ledger.list_for_user(current_user().id, include_all=include_all)
    return jsonify({"subscriptions": [ledger.subscription_to_dict(s) for s in subs]})


@bp.get("/coverage")
@login_required
def coverage():
    uid = current_user().id
    covered, sub = ledger.has_active_coverage(uid)
    return jsonify({
        "hasActiveSubscription": covered,
        "subscription": ledger.subscription_to_dict(sub) if sub is not None else None,
        "verifiedQRCodesCount": verified_count(uid),
        "maxQRCodes": MAX_CODES_PER_SUBSCRIPTION,
    })
