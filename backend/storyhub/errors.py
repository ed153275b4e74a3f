# Overview: Typed business errors shared by services and routes.

"""
Error taxonomy for the entitlement engine.

Every error a caller can act on carries a stable machine-readable ``code``
and an HTTP status. Routes render them as ``{"error": {...}}`` payloads.
Infrastructure failures (database unreachable, driver errors) are NOT
wrapped here; they propagate as raised by SQLAlchemy.
"""

from __future__ import annotations

from flask import jsonify


class EntitlementError(Exception):
    """Base class for business errors surfaced to callers."""

    status = 400

    def __init__(self, code: str, message: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"<{type(self).__name__} code={self.code!r}>"


class ValidationError(EntitlementError):
    """400-level input problem."""

    status = 400


class BusinessRuleViolation(EntitlementError):
    """
    Write rejected by the purchase-model rules.

    ``code`` is the violation classification (MODEL_A_VIOLATION, ...);
    ``hint`` tells the caller which field combination would be accepted.
    """

    status = 400

    def __init__(self, code: str, message: str, hint: str | None = None, details: dict | None = None):
        super().__init__(code, message, details)
        self.hint = hint

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.hint:
            payload["hint"] = self.hint
        return payload


class NotFoundError(EntitlementError):
    """Target story/chapter/purchase does not exist."""

    status = 404


class ConflictError(EntitlementError):
    """409-level entitlement conflict (already purchased, wrong purchase model)."""

    status = 409


class InsufficientFundsError(EntitlementError):
    """Coin balance lower than the price."""

    status = 402

    def __init__(self, required: int, balance: int):
        super().__init__(
            "insufficient_funds",
            f"Insufficient coins: {required} required, {balance} available",
            details={"required": required, "balance": balance},
        )
        self.required = required
        self.balance = balance


def error_response(exc: EntitlementError):
    """Render an EntitlementError as a Flask (response, status) tuple."""
    return jsonify({"error": exc.to_dict()}), exc.status


def internal_error_response():
    return jsonify({"error": {"code": "internal_error", "message": "Internal server error"}}), 500
