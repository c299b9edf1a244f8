# Overview: Payment gateway orchestrator; routes pay/refund/verify to the provider's gateway.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from flask import current_app

from ..errors import GatewayError, InvalidRequest

logger = logging.getLogger(__name__)


class PaymentStatus:
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    ALL = (PENDING, AUTHORIZED, CAPTURED, FAILED, REFUNDED)

    @classmethod
    def parse(cls, value: str | None) -> str | None:
        """Upper-cased known status, or None for anything unrecognised."""
        if not value:
            return None
        value = value.strip().upper()
        return value if value in cls.ALL else None


@dataclass(frozen=True)
class ProviderSettings:
    provider_currency: str = "USD"
    publishable_key: str = ""
    secret_key: str = ""
    webhook_secret: str = ""
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayContext:
    tenant_id: int | None
    order_currency: str | None
    conversion_rates: dict
    tenant_metadata: dict
    provider_settings: ProviderSettings


@dataclass(frozen=True)
class PaymentIntent:
    """
    What the client needs to complete payment.

    metadata["provider_reference"], when present, replaces the reference the
    checkout generated for the PENDING transaction.
    """
    provider: str
    client_secret: str | None = None
    payment_url: str | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def provider_reference(self) -> str | None:
        return self.metadata.get("provider_reference")

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "client_secret": self.client_secret,
            "payment_url": self.payment_url,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class RefundPaymentRequest:
    provider_reference: str
    amount_cents: int
    currency: str
    reason: str | None = None


@dataclass(frozen=True)
class VerificationRequest:
    payload: str
    signature: str | None = None
    event_type: str | None = None
    headers: dict = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    provider_reference: str
    status: str | None
    amount_cents: int
    currency: str | None
    event_type: str | None
    raw_payload: str


class PaymentGateway(Protocol):
    provider: str

    def pay(self, order, context: GatewayContext) -> PaymentIntent:
        ...

    def refund(self, request: RefundPaymentRequest, context: GatewayContext) -> str:
        ...

    def verify(self, request: VerificationRequest, context: GatewayContext) -> VerificationResult:
        ...


class PaymentGatewayOrchestrator:
    """
    Gateways keyed by provider name (case-insensitive).

    Provider settings come from the PAYMENT_PROVIDERS config mapping:
    {"sandbox": {"provider_currency": "USD", "webhook_secret": "...", ...}}.
    An optional "conversion_rates" mapping and "metadata" mapping per provider
    are passed through to the gateway context.
    """

    def __init__(self, provider_config: dict | None = None):
        self._gateways: dict[str, PaymentGateway] = {}
        self._provider_config = {k.lower(): v for k, v in (provider_config or {}).items()}

    def register(self, gateway: PaymentGateway) -> None:
        self._gateways[gateway.provider.lower()] = gateway

    def supports(self, provider: str | None) -> bool:
        return bool(provider) and provider.lower() in self._gateways

    def providers(self) -> list[str]:
        return sorted(self._gateways)

    def provider_settings(self, provider: str) -> ProviderSettings:
        raw = self._provider_config.get(provider.lower()) or {}
        return ProviderSettings(
            provider_currency=raw.get("provider_currency", "USD"),
            publishable_key=raw.get("publishable_key", ""),
            secret_key=raw.get("secret_key", ""),
            webhook_secret=raw.get("webhook_secret", ""),
            metadata=dict(raw.get("metadata") or {}),
        )

    def _resolve(self, provider: str) -> PaymentGateway:
        gateway = self._gateways.get((provider or "").lower())
        if gateway is None:
            logger.error("Payment gateway for provider %s was not found", provider)
            raise InvalidRequest(f"Payment gateway for provider '{provider}' was not registered")
        return gateway

    def build_context(self, provider: str, tenant_id: int | None, order_currency: str | None) -> GatewayContext:
        raw = self._provider_config.get(provider.lower()) or {}
        settings = self.provider_settings(provider)

        rates = {k.upper(): v for k, v in (raw.get("conversion_rates") or {}).items()}
        if order_currency and order_currency.upper() not in rates:
            rates[order_currency.upper()] = 1
        if settings.provider_currency.upper() not in rates:
            rates[settings.provider_currency.upper()] = 1

        tenant_metadata = {"tenant_id": str(tenant_id) if tenant_id is not None else ""}
        return GatewayContext(
            tenant_id=tenant_id,
            order_currency=order_currency,
            conversion_rates=rates,
            tenant_metadata=tenant_metadata,
            provider_settings=ProviderSettings(
                provider_currency=settings.provider_currency,
                publishable_key=settings.publishable_key,
                secret_key=settings.secret_key,
                webhook_secret=settings.webhook_secret,
                metadata={**settings.metadata, "provider": provider},
            ),
        )

    def pay(self, provider: str, order) -> PaymentIntent:
        gateway = self._resolve(provider)
        context = self.build_context(provider, order.tenant_id, order.currency)
        try:
            return gateway.pay(order, context)
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("Payment initiation via %s failed for order %s", provider, order.order_number)
            raise GatewayError(f"Payment provider '{provider}' failed to initiate payment") from exc

    def refund(self, provider: str, request: RefundPaymentRequest, *, tenant_id: int | None = None) -> str:
        gateway = self._resolve(provider)
        context = self.build_context(provider, tenant_id, request.currency)
        return gateway.refund(request, context)

    def verify(self, provider: str, request: VerificationRequest, *, tenant_id: int | None = None) -> VerificationResult:
        gateway = self._resolve(provider)
        context = self.build_context(provider, tenant_id, None)
        return gateway.verify(request, context)


def get_orchestrator() -> PaymentGatewayOrchestrator:
    """The app's orchestrator, created by create_app()."""
    return current_app.extensions["payment_gateways"]
