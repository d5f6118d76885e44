"""HTTP errors raised by API handlers and their JSON rendering."""
from __future__ import annotations

from typing import Any, Dict, Tuple

from flask import Flask, current_app, jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException, InternalServerError

from .extensions import db


class ApiError(HTTPException):
    """Base class for errors rendered as ``{"success": false, ...}``."""

    code = 400
    description = "The request could not be processed."

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(description=message or self.description)
        self.details = details


class ValidationError(ApiError):
    code = 400
    description = "The request payload is invalid."


class Unauthorized(ApiError):
    code = 401
    description = "Authentication is required to access this resource."


class Forbidden(ApiError):
    code = 403
    description = "You do not have the required permission to access this resource."


class NotFound(ApiError):
    code = 404
    description = "The requested resource was not found."


class Conflict(ApiError):
    code = 409
    description = "The resource conflicts with an existing record."


def _error_payload(error: HTTPException) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "success": False,
        "status": error.code,
        "message": error.description,
    }
    details = getattr(error, "details", None)
    if details:
        payload.update(details)
    return payload


def handle_http_error(error: HTTPException) -> Tuple[Any, int]:
    return jsonify(_error_payload(error)), error.code or 500


def handle_integrity_error(error: IntegrityError) -> Tuple[Any, int]:
    db.session.rollback()
    current_app.logger.info("Integrity error rejected: %s", error.orig)
    return handle_http_error(Conflict())


def handle_unexpected_error(error: Exception) -> Tuple[Any, int]:
    db.session.rollback()
    current_app.logger.exception("Unhandled error while processing request")
    return handle_http_error(InternalServerError())


def register_error_handlers(app: Flask) -> None:
    app.register_error_handler(HTTPException, handle_http_error)
    app.register_error_handler(IntegrityError, handle_integrity_error)
    app.register_error_handler(Exception, handle_unexpected_error)
