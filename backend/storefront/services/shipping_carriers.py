# Overview: Carrier adapter interface for EXTERNAL shipping methods.

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class CarrierQuoteRequest:
    carrier_key: str
    service_level: str | None
    address: dict | None
    subtotal_cents: int
    total_weight: int
    total_quantity: int


@dataclass(frozen=True)
class CarrierQuote:
    amount_cents: int
    currency: str | None = None
    service_level: str | None = None


class ShippingCarrierAdapter(Protocol):
    carrier_key: str

    def quote(self, request: CarrierQuoteRequest) -> CarrierQuote | None:
        ...


class NullShippingCarrierAdapter:
    """Registered under a key when a carrier is configured but not integrated; never quotes."""

    def __init__(self, carrier_key: str = "null"):
        self.carrier_key = carrier_key

    def quote(self, request: CarrierQuoteRequest) -> CarrierQuote | None:
        return None


class CarrierRegistry:
    """Adapters by carrier_key, case-insensitive. Lives in app.extensions["shipping_carriers"]."""

    def __init__(self):
        self._adapters: dict[str, ShippingCarrierAdapter] = {}

    def register(self, adapter: ShippingCarrierAdapter) -> None:
        self._adapters[adapter.carrier_key.lower()] = adapter

    def get(self, carrier_key: str | None) -> ShippingCarrierAdapter | None:
        if not carrier_key:
            return None
        return self._adapters.get(carrier_key.lower())
