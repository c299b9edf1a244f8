# Overview: Webhook reconciler; applies provider payment events to transactions and orders.

from __future__ import annotations

import json
import logging

from ..extensions import db
from ..models import Order, PaymentTransaction
from .concurrency import run_with_retry
from .inventory_service import release_order_inventory
from .payment_gateway import PaymentStatus, VerificationRequest, get_orchestrator
from storefront.time_utils import utcnow

logger = logging.getLogger(__name__)


"""
Webhook reconciliation (authoritative)

Deliveries are at-least-once and may arrive out of order.

- Unknown (provider, reference): logged and ignored, nothing is written.
- Re-delivery of the status the transaction already holds: only the raw
  payload is stored.
- PENDING or an unrecognised status: only the raw payload is stored.
- AUTHORIZED after CAPTURED or REFUNDED: only the raw payload is stored; the
  transaction keeps its settled status.
- AUTHORIZED / CAPTURED: PENDING order -> PROCESSING, paid_at set once.
- FAILED: PENDING/PROCESSING order -> CANCELLED, reservation released once.
- REFUNDED: any order not CANCELLED/REFUNDED -> REFUNDED, reservation released once.
- Events that would move an order backwards (e.g. CAPTURED after SHIPPED or
  CANCELLED) update the transaction only and are logged.
"""

# Order statuses each payment event may move an order out of.
_FORWARD_FROM = {
    PaymentStatus.AUTHORIZED: {"PENDING"},
    PaymentStatus.CAPTURED: {"PENDING"},
    PaymentStatus.FAILED: {"PENDING", "PROCESSING"},
    PaymentStatus.REFUNDED: {"PENDING", "PROCESSING", "SHIPPED", "DELIVERED"},
}

_ORDER_STATUS_FOR = {
    PaymentStatus.AUTHORIZED: "PROCESSING",
    PaymentStatus.CAPTURED: "PROCESSING",
    PaymentStatus.FAILED: "CANCELLED",
    PaymentStatus.REFUNDED: "REFUNDED",
}

# Transaction statuses a late AUTHORIZED event must not overwrite.
_SETTLED = {PaymentStatus.CAPTURED, PaymentStatus.REFUNDED}


def _store_payload(payload) -> dict | list | str | None:
    if payload is None or isinstance(payload, (dict, list)):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    try:
        return json.loads(payload)
    except ValueError:
        return {"raw": payload}


def _apply_order_transition(order: Order, status: str, now) -> None:
    allowed_from = _FORWARD_FROM.get(status, set())
    if order.status == _ORDER_STATUS_FOR[status]:
        return
    if order.status not in allowed_from:
        logger.warning(
            "Ignoring %s event for order %s in status %s",
            status, order.order_number, order.status,
        )
        return

    order.status = _ORDER_STATUS_FOR[status]
    if status in (PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED):
        if order.paid_at is None:
            order.paid_at = now
    elif status == PaymentStatus.FAILED:
        order.cancelled_at = now
        release_order_inventory(order)
    elif status == PaymentStatus.REFUNDED:
        release_order_inventory(order)


def handle_payment_webhook(
    tenant_id: int | None,
    provider: str,
    reference: str,
    status: str | None,
    payload=None,
) -> Order | None:
    """
    Apply one provider event.

    status is a PaymentStatus value or None when the provider's status could
    not be mapped. Returns the order, or None when the reference is unknown.
    """
    provider = (provider or "").strip().lower()
    status = PaymentStatus.parse(status)
    stored_payload = _store_payload(payload)

    def _op() -> Order | None:
        query = db.session.query(PaymentTransaction).filter(
            PaymentTransaction.provider == provider,
            PaymentTransaction.provider_reference == reference,
        )
        if tenant_id is not None:
            query = query.filter(PaymentTransaction.tenant_id == tenant_id)
        payment = query.first()

        if payment is None:
            logger.warning("Payment webhook received for unknown transaction %s/%s", provider, reference)
            return None

        order = payment.order
        now = utcnow()

        payment.raw_payload = stored_payload
        payment.processed_at = now

        if status is None or status == PaymentStatus.PENDING:
            db.session.commit()
            return order

        if payment.status == status:
            logger.info("Duplicate %s webhook for %s; payload stored only", status, reference)
            db.session.commit()
            return order

        if status == PaymentStatus.AUTHORIZED and payment.status in _SETTLED:
            logger.info("Late AUTHORIZED webhook for %s already %s; payload stored only", reference, payment.status)
            db.session.commit()
            return order

        payment.status = status
        _apply_order_transition(order, status, now)
        db.session.commit()
        logger.info("Webhook %s applied to order %s (now %s)", status, order.order_number, order.status)
        return order

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def verify_and_handle(
    tenant_id: int | None,
    provider: str,
    payload: str,
    signature: str | None,
    event_type: str | None = None,
    headers: dict | None = None,
) -> Order | None:
    """
    Authenticate a raw delivery with the provider's gateway, then reconcile it.

    GatewayAuthError (401) propagates for missing or bad signatures.
    """
    result = get_orchestrator().verify(
        provider,
        VerificationRequest(
            payload=payload,
            signature=signature,
            event_type=event_type,
            headers=dict(headers or {}),
        ),
        tenant_id=tenant_id,
    )
    if not result.provider_reference:
        logger.warning("Webhook from %s carried no payment reference", provider)
        return None
    return handle_payment_webhook(tenant_id, provider, result.provider_reference, result.status, result.raw_payload)
