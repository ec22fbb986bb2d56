# Overview: Domain error taxonomy and the JSON error envelope returned by the API.

"""
Every business-rule violation is raised as a DomainError subclass and
recovered at the HTTP boundary. The response body always has the shape:

    {"error": {"kind": "<stable kind>", "message": "<human text>", "details": {...}}}

Unexpected exceptions become kind "internal" with a generic message; the
traceback goes to the application log only.
"""

from __future__ import annotations

from flask import Flask, current_app, jsonify
from werkzeug.exceptions import HTTPException


class DomainError(Exception):
    """Base class for errors that map to a structured API response."""

    kind = "domain_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainError):
    """Malformed or missing input."""
    kind = "validation_error"
    status_code = 400


class Unauthenticated(DomainError):
    kind = "unauthenticated"
    status_code = 401


class NotFound(DomainError):
    kind = "not_found"
    status_code = 404


class Forbidden(DomainError):
    kind = "forbidden"
    status_code = 403


class InvalidTransition(DomainError):
    """Raised when a state table rejects a (source -> target) edge."""
    kind = "invalid_transition"
    status_code = 400

    def __init__(self, source: str, target: str, message: str | None = None):
        super().__init__(
            message or f"Invalid status transition from {source} to {target}",
            details={"source": source, "target": target},
        )
        self.source = source
        self.target = target


class OutOfStock(DomainError):
    kind = "out_of_stock"
    status_code = 400


class NegativeStockError(DomainError):
    kind = "negative_stock"
    status_code = 400


class InvalidSignature(DomainError):
    kind = "invalid_signature"
    status_code = 400


class AlreadyRefunded(DomainError):
    kind = "already_refunded"
    status_code = 400


class AlreadyPaid(DomainError):
    kind = "already_paid"
    status_code = 400


class DeliveryExists(DomainError):
    kind = "delivery_exists"
    status_code = 400


class GatewayError(DomainError):
    """Upstream payment provider failure (502) or missing configuration (503)."""
    kind = "gateway_error"
    status_code = 502

    def __init__(self, message: str, details: dict | None = None, *, unavailable: bool = False):
        super().__init__(message, details)
        if unavailable:
            self.status_code = 503


class Internal(DomainError):
    kind = "internal"
    status_code = 500


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(DomainError)
    def handle_domain_error(exc: DomainError):
        if exc.status_code >= 500:
            current_app.logger.error("%s: %s", exc.kind, exc.message)
            body = {"kind": exc.kind, "message": "Internal server error", "details": {}}
            if exc.kind == GatewayError.kind:
                body["message"] = exc.message
            return jsonify({"error": body}), exc.status_code
        return jsonify({"error": exc.to_dict()}), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        kind = {404: NotFound.kind, 405: "method_not_allowed"}.get(exc.code, "http_error")
        return jsonify({
            "error": {"kind": kind, "message": exc.description, "details": {}}
        }), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        current_app.logger.exception("Unhandled error")
        return jsonify({
            "error": {"kind": Internal.kind, "message": "Internal server error", "details": {}}
        }), 500
