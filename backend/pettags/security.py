from __future__ import annotations

import os
from functools import wraps
from typing import Any, Callable, Optional, Tuple

from flask import current_app, g, has_app_context
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from .errors import AuthError, ForbiddenError


def _serializer() -> URLSafeTimedSerializer:
    secret = current_app.config.get("SECRET_KEY") if has_app_context() else None
    return URLSafeTimedSerializer(secret_key=secret or os.getenv("SECRET_KEY", "change-me"), salt="pettags-auth")


def issue_token(user_id: int, role: str) -> str:
    """Issue a signed token for a user.

    Payload: {"id": int, "role": str}. The role is informational; the
    stored user role is what authorization checks use.
    """
    return _serializer().dumps({"id": int(user_id), "role": str(role or "user")})


def verify_token(token: str) -> Tuple[Optional[int], Optional[str]]:
    """Verify a token and return (user_id, role) if valid, else (None, None).

    Max age configurable via AUTH_TOKEN_MAX_AGE seconds (default 30 days).
    """
    max_age_default = 60 * 60 * 24 * 30  # 30 days
    try:
        max_age = int(os.getenv("AUTH_TOKEN_MAX_AGE", str(max_age_default)))
    except ValueError:
        max_age = max_age_default
    try:
        data = _serializer().loads(token, max_age=max_age)
        uid = int(data.get("id")) if isinstance(data, dict) and data.get("id") is not None else None
        role = str(data.get("role")) if isinstance(data, dict) and data.get("role") is not None else None
        return (uid, role)
    except (BadSignature, SignatureExpired, ValueError, TypeError):
        return (None, None)


def current_user():
    """User attached to the request by the API loader, or None."""
    return getattr(g, "current_user", None)


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if current_user() is None:
            raise AuthError("Unauthorized")
        return fn(*args, **kwargs)

    return wrapper


def admin_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = current_user()
        if user is None:
            raise AuthError("Unauthorized")
        if getattr(user, "role", None) != "admin":
            raise ForbiddenError("Admin access required")
        return fn(*args, **kwargs)

    return wrapper
