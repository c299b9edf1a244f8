# Overview: Order queries and fulfilment status changes.

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..models import Order, PaymentTransaction
from ..models.orders import ORDER_STATUSES
from ..errors import InvalidRequest, InvalidStateTransition, NotFound
from storefront.time_utils import utcnow, to_utc_z
from .concurrency import run_with_retry
from .inventory_service import commit_order_inventory, release_order_inventory
from .notification_service import NotificationType, notify
from .payment_gateway import PaymentIntent, get_orchestrator
from .checkout_service import start_payment

logger = logging.getLogger(__name__)


# Manual (operator) transitions. REFUNDED is reached only through refund
# settlement or a REFUNDED payment event.
ALLOWED_TRANSITIONS = {
    "PENDING": {"PROCESSING", "CANCELLED"},
    "PROCESSING": {"SHIPPED", "CANCELLED"},
    "SHIPPED": {"DELIVERED"},
    "DELIVERED": set(),
    "CANCELLED": set(),
    "REFUNDED": set(),
}

MAX_PAGE_SIZE = 200


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def get_order(tenant_id: int, order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id, tenant_id=tenant_id).first()
    if order is None:
        raise NotFound("Order not found")
    return order


def list_orders(
    tenant_id: int,
    *,
    page: int = 1,
    page_size: int = 20,
    status: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    search: str | None = None,
) -> dict:
    """Newest first. page >= 1, page_size clamped to 1..200."""
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or 1), 1), MAX_PAGE_SIZE)

    query = db.session.query(Order).filter(Order.tenant_id == tenant_id)
    if status:
        status = status.upper()
        if status not in ORDER_STATUSES:
            raise InvalidRequest(f"status must be one of {', '.join(ORDER_STATUSES)}")
        query = query.filter(Order.status == status)
    if from_date:
        query = query.filter(Order.created_at >= from_date)
    if to_date:
        query = query.filter(Order.created_at <= to_date)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(db.or_(Order.order_number.ilike(term), Order.email.ilike(term)))

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "page": page,
        "page_size": page_size,
        "total": total,
        "items": [o.to_dict(include_items=False) for o in orders],
    }


def update_order_status(tenant_id: int, order_id: int, status: str, tracking_number: str | None = None) -> Order:
    """
    Operator status change.

    - PROCESSING: marks a manually paid order (sets paid_at once)
    - SHIPPED: stamps shipped_at, stores the tracking number and turns the
      reservation into a sale (on-hand and reserved both drop)
    - DELIVERED: stamps delivered_at
    - CANCELLED: releases the reservation (once)
    """
    target = (status or "").strip().upper()
    if target not in ORDER_STATUSES:
        raise InvalidRequest(f"status must be one of {', '.join(ORDER_STATUSES)}")

    def _op() -> Order:
        order = get_order(tenant_id, order_id)
        if not can_transition(order.status, target):
            raise InvalidStateTransition(
                f"Cannot move order from {order.status} to {target}",
                details={"current_status": order.status, "requested_status": target},
            )

        now = utcnow()
        order.status = target
        if target == "PROCESSING":
            if order.paid_at is None:
                order.paid_at = now
        elif target == "SHIPPED":
            order.shipped_at = now
            if tracking_number:
                order.tracking_number = tracking_number.strip()
            commit_order_inventory(order)
        elif target == "DELIVERED":
            order.delivered_at = now
        elif target == "CANCELLED":
            order.cancelled_at = now
            release_order_inventory(order)

        db.session.commit()
        return order

    try:
        order = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    logger.info("Order %s moved to %s", order.order_number, order.status)
    if order.status == "SHIPPED":
        notify(NotificationType.ORDER_SHIPPED, order, tracking_number=order.tracking_number)
    return order


def _latest_payment(order: Order) -> PaymentTransaction | None:
    payments = [p for p in order.payments if p.transaction_type == "PAYMENT"]
    if not payments:
        return None
    return max(payments, key=lambda p: (p.processed_at or order.created_at or datetime.min, p.id))


def get_payment_status(tenant_id: int, order_id: int) -> dict:
    order = get_order(tenant_id, order_id)
    payment = _latest_payment(order)
    updated_at = (payment.processed_at if payment else None) or order.created_at
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "order_status": order.status.lower(),
        "payment_status": payment.status.lower() if payment else "pending",
        "provider": payment.provider if payment else None,
        "updated_at": to_utc_z(updated_at),
    }


def retry_payment(tenant_id: int, order_id: int, provider: str | None = None) -> tuple[Order, PaymentIntent]:
    """
    Start payment again for an order whose gateway call failed or was abandoned.

    Only PENDING orders qualify. A different provider may be chosen; the
    PENDING transaction is re-pointed at it.
    """
    order = get_order(tenant_id, order_id)
    if order.status != "PENDING":
        raise InvalidStateTransition(
            f"Payment can only be retried for PENDING orders (order is {order.status})",
            details={"current_status": order.status},
        )

    payment = next(
        (p for p in reversed(order.payments) if p.transaction_type == "PAYMENT" and p.status == "PENDING"),
        None,
    )
    if payment is None:
        raise InvalidStateTransition("Order has no pending payment to retry")

    if provider:
        provider = provider.strip().lower()
        if not get_orchestrator().supports(provider):
            raise InvalidRequest(f"Payment provider '{provider}' is not available")
        if provider != payment.provider:
            payment.provider = provider
            db.session.commit()

    intent = start_payment(order, payment)
    logger.info("Payment restarted for order %s via %s", order.order_number, payment.provider)
    return order, intent
