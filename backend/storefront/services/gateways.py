# Overview: Built-in payment gateways (sandbox card processor and manual/offline payment).

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import uuid

from ..errors import GatewayAuthError, GatewayError, InvalidRequest
from .payment_gateway import (
    GatewayContext,
    PaymentIntent,
    PaymentStatus,
    RefundPaymentRequest,
    VerificationRequest,
    VerificationResult,
)

logger = logging.getLogger(__name__)


SANDBOX_STATUS_MAP = {
    "succeeded": PaymentStatus.CAPTURED,
    "paid": PaymentStatus.CAPTURED,
    "captured": PaymentStatus.CAPTURED,
    "requires_capture": PaymentStatus.AUTHORIZED,
    "authorized": PaymentStatus.AUTHORIZED,
    "requires_payment_method": PaymentStatus.PENDING,
    "pending": PaymentStatus.PENDING,
    "failed": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
}


def sign_payload(secret: str, payload: str) -> str:
    """Hex HMAC-SHA256 of the raw payload, as sent in X-Signature."""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def _base_metadata(context: GatewayContext, provider_reference: str) -> dict:
    metadata = {
        "provider_reference": provider_reference,
        "provider_currency": context.provider_settings.provider_currency,
        "order_currency": context.order_currency,
    }
    for code, rate in context.conversion_rates.items():
        metadata[f"conversion:{code}"] = str(rate)
    for key, value in context.tenant_metadata.items():
        metadata[f"tenant:{key}"] = value
    for key, value in context.provider_settings.metadata.items():
        metadata[f"provider:{key}"] = value
    return metadata


class SandboxPaymentGateway:
    """
    Test-mode card processor.

    pay() issues a "pi_<hex>" reference and a hosted payment URL; verify()
    authenticates webhook bodies with a hex HMAC-SHA256 signature over the raw
    payload and translates the processor's status text; refund() always succeeds.
    """

    provider = "sandbox"

    def pay(self, order, context: GatewayContext) -> PaymentIntent:
        provider_reference = f"pi_{uuid.uuid4().hex}"
        logger.info(
            "Creating sandbox payment intent for order %s (%s %s)",
            order.order_number, order.grand_total_cents, order.currency,
        )
        return PaymentIntent(
            provider=self.provider,
            client_secret=secrets.token_urlsafe(32),
            payment_url=f"https://payments.sandbox.test/pay/{provider_reference}",
            metadata=_base_metadata(context, provider_reference),
        )

    def _check_signature(self, request: VerificationRequest, context: GatewayContext) -> None:
        secret = context.provider_settings.webhook_secret
        if not secret:
            raise GatewayError("Webhook secret is not configured for sandbox")
        if not request.signature:
            raise GatewayAuthError("Missing webhook signature header")
        expected = sign_payload(secret, request.payload)
        if not hmac.compare_digest(expected.lower(), request.signature.strip().lower()):
            raise GatewayAuthError("Invalid webhook signature")

    def verify(self, request: VerificationRequest, context: GatewayContext) -> VerificationResult:
        self._check_signature(request, context)

        try:
            root = json.loads(request.payload or "{}")
        except ValueError:
            raise InvalidRequest("Webhook payload is not valid JSON")
        if not isinstance(root, dict):
            raise InvalidRequest("Webhook payload must be a JSON object")

        data = root.get("data") if isinstance(root.get("data"), dict) else root
        reference = data.get("reference") or data.get("id") or ""
        status_text = str(data.get("status") or "pending").lower()
        amount = data.get("amount_cents", data.get("amount", 0))
        currency = data.get("currency") or context.provider_settings.provider_currency
        event_type = request.event_type or root.get("type")

        status = SANDBOX_STATUS_MAP.get(status_text)
        logger.info("Sandbox webhook verified for %s with status %s", reference, status)

        return VerificationResult(
            provider_reference=str(reference),
            status=status,
            amount_cents=int(amount) if isinstance(amount, int) else 0,
            currency=currency,
            event_type=event_type,
            raw_payload=request.payload,
        )

    def refund(self, request: RefundPaymentRequest, context: GatewayContext) -> str:
        logger.info(
            "Sandbox refund for %s: %s %s",
            request.provider_reference, request.amount_cents, request.currency,
        )
        return PaymentStatus.REFUNDED


class ManualPaymentGateway:
    """
    Offline payment (bank transfer, cash on delivery).

    No client-side step; an operator marks the order paid by moving it to
    PROCESSING. Refunds are settled outside the system and recorded as done.
    """

    provider = "manual"

    def pay(self, order, context: GatewayContext) -> PaymentIntent:
        provider_reference = f"manual_{uuid.uuid4().hex}"
        return PaymentIntent(
            provider=self.provider,
            metadata=_base_metadata(context, provider_reference),
        )

    def verify(self, request: VerificationRequest, context: GatewayContext) -> VerificationResult:
        raise GatewayAuthError("Manual payments do not accept webhooks")

    def refund(self, request: RefundPaymentRequest, context: GatewayContext) -> str:
        return PaymentStatus.REFUNDED
