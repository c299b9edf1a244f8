"""
Error taxonomy for the order pipeline.

Every service raises a StorefrontError subclass; routes translate it with
`jsonify(e.to_dict()), e.status_code`. Anything else is a 500.
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for expected business and validation failures."""

    status_code = 400
    code = "STOREFRONT_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidRequest(StorefrontError):
    """Malformed or missing input."""
    code = "INVALID_REQUEST"


class NotFound(StorefrontError):
    """Cart, order, product, variant, method or refund does not exist in the tenant."""
    status_code = 404
    code = "NOT_FOUND"


class EmptyCart(StorefrontError):
    code = "EMPTY_CART"


class Unavailable(StorefrontError):
    """Product unpublished, shipping method disabled or not serving the address."""
    code = "UNAVAILABLE"


class OutOfRange(StorefrontError):
    code = "OUT_OF_RANGE"


class InsufficientStock(StorefrontError):
    status_code = 409
    code = "INSUFFICIENT_STOCK"


class AlreadyProcessed(StorefrontError):
    status_code = 409
    code = "ALREADY_PROCESSED"


class InvalidStateTransition(StorefrontError):
    status_code = 409
    code = "INVALID_STATE_TRANSITION"


class GatewayError(StorefrontError):
    """Payment provider call failed."""
    status_code = 502
    code = "GATEWAY_ERROR"


class GatewayAuthError(GatewayError):
    """Webhook signature missing or invalid."""
    status_code = 401
    code = "GATEWAY_AUTH_ERROR"
