from flask import request, jsonify
from sqlalchemy import func
from werkzeug.security import generate_password_hash, check_password_hash

from ...extensions import db
from ...models.user import User
from ...schemas.accounts import RegisterSchema
from ...security import issue_token
from ..loyalty.referrals import ensure_referral_code, find_referrer, record_referral
from . import bp


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _auth_payload(user: User, token: str) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "role": user.role,
        "loyaltyPoints": int(user.loyalty_points or 0),
        "referralCode": user.referral_code,
        "token": token,
    }


@bp.post("/register")
def register():
    """Create an owner account.

    Body JSON: email, password (min 8), firstName, lastName, optional phone,
    address fields and referralCode. A referral credits both accounts.
    """
    data = RegisterSchema().load(request.get_json(silent=True) or {})

    if User.query.filter(func.lower(User.email) == data["email"]).first():
        return _json_error("Email already in use", 409)
    # Reject a bad referral code before anything is written
    referrer = find_referrer(data.get("referral_code"))

    user = User(
        email=data["email"],
        first_name=data["first_name"],
        last_name=data["last_name"],
        phone=data.get("phone"),
        street=data.get("street"),
        city=data.get("city"),
        state=data.get("state"),
        zip_code=data.get("zip_code"),
        country=data.get("country"),
        role="user",
        password_hash=generate_password_hash(data["password"]),
    )
    db.session.add(user)
    db.session.flush()
    ensure_referral_code(user)
    db.session.commit()

    if referrer is not None:
        record_referral(referrer, user)

    token = issue_token(int(user.id), user.role or "user")
    return jsonify(_auth_payload(user, token)), 201


@bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}

    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or "@" not in email:
        return _json_error("Valid email is required")
    if not password:
        return _json_error("Password is required")

    user = User.query.filter_by(email=email).first()
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        return _json_error("Invalid email or password", 401)

    user.last_login_at = func.now()
    if not user.referral_code:
        ensure_referral_code(user)
    db.session.commit()

    token = issue_token(int(user.id), user.role or "user")
    return jsonify(_auth_payload(user, token))
