from __future__ import annotations

import logging
from typing import Any

from flask import Flask, jsonify
from marshmallow import ValidationError as SchemaValidationError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Error raised by service code and rendered as ``{"error": message, ...extra}``."""

    status_code = 400

    def __init__(self, message: str, status: int | None = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status_code = status
        self.extra = extra

    def to_dict(self) -> dict:
        out = {"error": self.message}
        out.update(self.extra)
        return out


class ValidationError(ApiError):
    status_code = 400


class AuthError(ApiError):
    status_code = 401


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class UpstreamError(ApiError):
    """An external gateway (payments, messaging) failed or timed out."""

    status_code = 502


def register_error_handlers(app: Flask) -> None:
    from .extensions import db

    @app.errorhandler(ApiError)
    def _api_error(err: ApiError):
        db.session.rollback()
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(SchemaValidationError)
    def _schema_error(err: SchemaValidationError):
        messages = err.normalized_messages()
        first = None
        if isinstance(messages, dict):
            for field, msgs in messages.items():
                msg = msgs[0] if isinstance(msgs, list) and msgs else msgs
                first = f"{field}: {msg}"
                break
        return jsonify({"error": first or "Invalid request", "details": messages}), 400

    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        return jsonify({"error": err.description or err.name}), err.code or 500

    @app.errorhandler(Exception)
    def _unexpected(err: Exception):
        logger.exception("Unhandled error: %s", err)
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500
