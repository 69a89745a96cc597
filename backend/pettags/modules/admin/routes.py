from __future__ import annotations

import csv
import io
from datetime import datetime

from flask import Blueprint, Response, jsonify, request, g

from ...errors import NotFoundError
from ...extensions import db
from ...models.qr_code import QRCode
from ...models.user import User
from ...schemas.loyalty import AdjustPointsSchema, RedemptionStatusSchema
from ...schemas.qrcodes import GenerateCodesSchema
from ..loyalty import rewards
from ..qrcodes import registry

bp = Blueprint("admin", __name__, url_prefix="/admin")


@bp.before_request
def _require_admin():
    u = getattr(g, "current_user", None)
    if not u or getattr(u, "role", None) != "admin":
        return jsonify({"error": "Admin access required"}), 403


# QR code stock -------------------------------------------------------------

@bp.post("/qrcodes/generate")
def admin_generate_codes():
    """Generate a batch of unassigned codes. Body: { count: 1..500 }."""
    data = GenerateCodesSchema().load(request.get_json(silent=True) or {})
    rows = registry.create_codes(data["count"])
    return jsonify({"qrCodes": [registry.qr_code_to_dict(r) for r in rows], "count": len(rows)}), 201


@bp.get("/qrcodes")
def admin_list_codes():
    """List codes.

    Query params:
      - status: unassigned|assigned|verified|lost|revoked
      - q: substring of the code
      - limit: default 100 (max 500)
      - offset: default 0
    """
    status = (request.args.get("status") or "").strip().lower()
    q = (request.args.get("q") or "").strip()
    try:
        limit = max(1, min(500, int(request.args.get("limit", 100))))
    except ValueError:
        limit = 100
    try:
        offset = max(0, int(request.args.get("offset", 0)))
    except ValueError:
        offset = 0

    qry = QRCode.query
    if status:
        qry = qry.filter(QRCode.status == status)
    if q:
        qry = qry.filter(QRCode.code.ilike(f"%{q}%"))
    total = qry.count()
    rows = qry.order_by(QRCode.id.desc()).limit(limit).offset(offset).all()
    return jsonify({
        "qrCodes": [registry.qr_code_to_dict(r) for r in rows],
        "total": total,
        "available": registry.available_count(),
        "limit": limit,
        "offset": offset,
    })


@bp.get("/qrcodes/<int:qr_code_id>")
def admin_get_code(qr_code_id: int):
    return jsonify({"qrCode": registry.qr_code_to_dict(registry.get_code_by_id(qr_code_id))})


@bp.delete("/qrcodes/<int:qr_code_id>")
def admin_delete_code(qr_code_id: int):
    registry.delete_unassigned(qr_code_id)
    return jsonify({"deleted": True, "id": qr_code_id})


@bp.get("/qrcodes/export")
def admin_export_codes():
    """CSV of unused codes for printing. ``?mark=false`` leaves them flagged as not downloaded."""
    mark = (request.args.get("mark") or "true").lower() not in ("0", "false", "no")
    rows = registry.export_unused(mark_downloaded=mark)
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["id", "code", "url", "image_url", "created_at"])
    for r in rows:
        writer.writerow([r.id, r.code, registry.scan_target_url(r.code), r.image_url or "", r.created_at.isoformat() if r.created_at else ""])
    filename = f"qr-codes-{datetime.utcnow().strftime('%Y%m%d-%H%M%S')}.csv"
    return Response(
        buf.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# Loyalty -------------------------------------------------------------------

def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@bp.get("/users/<int:user_id>/loyalty")
def admin_user_loyalty(user_id: int):
    user = _get_user(user_id)
    return jsonify({
        "userId": user.id,
        "email": user.email,
        "name": user.full_name,
        "loyaltyPoints": int(user.loyalty_points or 0),
        "redemptions": [rewards.redemption_to_dict(r) for r in rewards.visible_redemptions(user.id)],
    })


@bp.put("/users/<int:user_id>/loyalty-points")
def admin_adjust_points(user_id: int):
    """Body: { points: int >= 0, action: "set" | "add" }."""
    data = AdjustPointsSchema().load(request.get_json(silent=True) or {})
    user, created = rewards.adjust_points(user_id, data["points"], data["action"])
    return jsonify({
        "userId": user.id,
        "loyaltyPoints": int(user.loyalty_points or 0),
        "newRedemption": rewards.redemption_to_dict(created) if created is not None else None,
    })


@bp.get("/redemptions/pending")
def admin_pending_redemptions():
    rows = rewards.pending_redemptions()
    return jsonify({"redemptions": [rewards.redemption_to_dict(r) for r in rows]})


@bp.put("/redemptions/<int:redemption_id>/status")
def admin_update_redemption(redemption_id: int):
    """Body: { status: pending|shipped|completed, adminNotes?: str }."""
    data = RedemptionStatusSchema().load(request.get_json(silent=True) or {})
    redemption = rewards.update_redemption_status(redemption_id, data["status"], data.get("admin_notes"))
    return jsonify({"redemption": rewards.redemption_to_dict(redemption)})
