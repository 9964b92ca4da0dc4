"""
Typed failures shared by every service and blueprint.

Services raise these; the error handler installed by ``register_error_handlers``
turns them into ``{"error": ..., "details": ...}`` JSON with the mapped status.
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, g, jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, details: Any = None, status_code: int | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthenticated(AppError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class Conflict(AppError):
    status_code = 409
    default_message = "Conflict"


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"


class ModuleNotInstalled(NotFound):
    default_message = "Module is not installed for this firm"


class ModuleDisabled(Forbidden):
    default_message = "Module is disabled for this firm"


def conflict_from_integrity(exc: IntegrityError, message: str, *, status_code: int | None = None) -> Conflict:
    logger.info("Unique constraint rejected write: %s", getattr(exc, "orig", exc))
    return Conflict(message, status_code=status_code)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def _app_error(e: AppError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.error("AppError %s (request_id=%s)", e.message, getattr(g, "request_id", None))
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"error": e.description or e.name}), e.code or 500

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error"}), 500
