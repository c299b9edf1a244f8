# Overview: Refund workflow; request, approve or deny, then settle through the payment gateway.

from __future__ import annotations

import logging
import uuid

from sqlalchemy import case, func, update

from ..extensions import db
from ..models import Order, OrderItem, PaymentTransaction, RefundRequest, RefundRequestItem
from ..models.refunds import REFUND_STATUSES
from ..errors import AlreadyProcessed, InvalidRequest, InvalidStateTransition, NotFound, OutOfRange
from ..validation import coerce_int, require_int
from storefront.time_utils import utcnow
from .concurrency import run_with_retry
from .inventory_service import release_order_inventory
from .notification_service import NotificationType, notify
from .order_service import MAX_PAGE_SIZE, get_order
from .payment_gateway import PaymentStatus, RefundPaymentRequest, get_orchestrator

logger = logging.getLogger(__name__)


"""
Refund workflow (authoritative)

PENDING -> APPROVED -> REFUNDED | FAILED
PENDING -> DENIED

- submit: lines must belong to the order; quantity per line is capped by the
  purchased quantity minus what open or settled requests already claim.
  requested_amount = sum(unit_price * quantity).
- approve / deny: a conditional UPDATE guarded on status = PENDING; the loser
  of a race gets AlreadyProcessed. approved_amount = requested_amount.
- immediate: an APPROVED request for an arbitrary amount, capped by the
  refundable balance, settled at once.
- settlement: the gateway is called outside any open transaction. The most
  recently processed CAPTURED/AUTHORIZED payment is refunded; with none the
  refund is recorded against the "manual" provider without a gateway call.
  Any gateway exception or non-REFUNDED answer becomes a FAILED REFUND
  transaction and a FAILED request; the order is untouched.
  Success appends a negative REFUNDED transaction, marks the request and the
  order REFUNDED and releases the order's reservation (once).
- every step queues a notification after its commit.
"""

MANUAL_PROVIDER = "manual"

# Requests whose lines still count against an order item's refundable quantity.
_CLAIMING_STATUSES = ("PENDING", "APPROVED", "REFUNDED")

_NON_REFUNDABLE_ORDER_STATUSES = ("CANCELLED",)


# =============================================================================
# Queries
# =============================================================================

def get_refund_request(tenant_id: int, refund_id: int) -> RefundRequest:
    refund = db.session.query(RefundRequest).filter_by(id=refund_id, tenant_id=tenant_id).first()
    if refund is None:
        raise NotFound("Refund request not found")
    return refund


def list_refund_requests(
    tenant_id: int,
    *,
    page: int = 1,
    page_size: int = 20,
    status: str | None = None,
    order_id: int | None = None,
) -> dict:
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or 1), 1), MAX_PAGE_SIZE)

    query = (
        db.session.query(RefundRequest, Order.order_number)
        .join(Order, Order.id == RefundRequest.order_id)
        .filter(RefundRequest.tenant_id == tenant_id)
    )
    if status:
        status = status.upper()
        if status not in REFUND_STATUSES:
            raise InvalidRequest(f"status must be one of {', '.join(REFUND_STATUSES)}")
        query = query.filter(RefundRequest.status == status)
    if order_id is not None:
        query = query.filter(RefundRequest.order_id == order_id)

    total = query.count()
    rows = (
        query.order_by(RefundRequest.created_at.desc(), RefundRequest.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    items = []
    for refund, order_number in rows:
        data = refund.to_dict()
        data["order_number"] = order_number
        items.append(data)
    return {"page": page, "page_size": page_size, "total": total, "items": items}


def _refundable_total(order: Order) -> int:
    captured = sum(
        p.amount_cents
        for p in order.payments
        if p.transaction_type == "PAYMENT" and p.status in (PaymentStatus.CAPTURED, PaymentStatus.AUTHORIZED)
    )
    if captured <= 0:
        captured = order.grand_total_cents
    return captured


def refundable_balance(order: Order) -> int:
    """
    Cents still refundable on an order.

    Captured/authorized payments (or the grand total when nothing was captured
    through a gateway) minus what approved, in-flight and settled refunds
    have claimed.
    """
    return max(_refundable_total(order) - (order.refund_claimed_cents or 0), 0)


def _claim_amount(order: Order, amount: int) -> bool:
    """Hold amount against the order's balance; False when it no longer fits."""
    result = db.session.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.refund_claimed_cents + amount <= _refundable_total(order),
        )
        .values(refund_claimed_cents=Order.refund_claimed_cents + amount)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


def _release_amount(order: Order, amount: int) -> None:
    db.session.execute(
        update(Order)
        .where(Order.id == order.id)
        .values(refund_claimed_cents=case(
            (Order.refund_claimed_cents > amount, Order.refund_claimed_cents - amount),
            else_=0,
        ))
        .execution_options(synchronize_session=False)
    )


def _balance_exceeded(order: Order, amount: int) -> OutOfRange:
    return OutOfRange(
        "Refund amount exceeds the refundable balance",
        details={"amount_cents": amount, "refundable_cents": refundable_balance(order)},
    )


def _already_requested(order_item_ids: list[int]) -> dict[int, int]:
    rows = (
        db.session.query(RefundRequestItem.order_item_id, func.coalesce(func.sum(RefundRequestItem.quantity), 0))
        .join(RefundRequest, RefundRequest.id == RefundRequestItem.refund_request_id)
        .filter(
            RefundRequestItem.order_item_id.in_(order_item_ids),
            RefundRequest.status.in_(_CLAIMING_STATUSES),
        )
        .group_by(RefundRequestItem.order_item_id)
        .all()
    )
    return {order_item_id: int(quantity) for order_item_id, quantity in rows}


def _ensure_refundable(order: Order) -> None:
    if order.status in _NON_REFUNDABLE_ORDER_STATUSES:
        raise InvalidStateTransition(
            f"Order {order.order_number} is {order.status} and cannot be refunded",
            details={"current_status": order.status},
        )


# =============================================================================
# Deferred requests
# =============================================================================

def _build_items(order: Order, items) -> tuple[list[RefundRequestItem], int]:
    if not isinstance(items, list) or not items:
        raise InvalidRequest("At least one item must be provided")

    order_items: dict[int, OrderItem] = {item.id: item for item in order.items}
    requested: dict[int, int] = {}
    for entry in items:
        if not isinstance(entry, dict):
            raise InvalidRequest("Each item must be an object with order_item_id and quantity")
        order_item_id = require_int(entry, "order_item_id")
        quantity = require_int(entry, "quantity", minimum=1)
        if order_item_id not in order_items:
            raise NotFound("Order item not found", details={"order_item_id": order_item_id})
        requested[order_item_id] = requested.get(order_item_id, 0) + quantity

    claimed = _already_requested(list(requested))
    lines: list[RefundRequestItem] = []
    total = 0
    for order_item_id, quantity in requested.items():
        order_item = order_items[order_item_id]
        remaining = order_item.quantity - claimed.get(order_item_id, 0)
        if quantity > remaining:
            raise OutOfRange(
                "Requested quantity exceeds purchased quantity",
                details={
                    "order_item_id": order_item_id,
                    "requested": quantity,
                    "refundable": max(remaining, 0),
                },
            )
        amount = order_item.unit_price_cents * quantity
        total += amount
        lines.append(
            RefundRequestItem(
                tenant_id=order.tenant_id,
                order_item_id=order_item_id,
                quantity=quantity,
                amount_cents=amount,
            )
        )
    return lines, total


def submit_refund_request(tenant_id: int, order_id: int, items, reason: str | None = None) -> RefundRequest:
    """Create a PENDING request for specific order lines."""
    order = get_order(tenant_id, order_id)
    _ensure_refundable(order)
    lines, total = _build_items(order, items)

    refund = RefundRequest(
        tenant_id=tenant_id,
        order_id=order.id,
        status="PENDING",
        reason=(reason or "").strip() or None,
        requested_amount_cents=total,
    )
    refund.items.extend(lines)
    db.session.add(refund)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Refund request %s submitted for order %s (%s cents)", refund.id, order.order_number, total)
    notify(NotificationType.REFUND_REQUESTED, order, refund_amount_cents=total, note=refund.reason)
    return refund


def _decide(tenant_id: int, refund_id: int, target: str, notes: str | None) -> RefundRequest:
    refund = get_refund_request(tenant_id, refund_id)
    values = {
        "status": target,
        "decision_at": utcnow(),
        "decision_notes": (notes or "").strip() or None,
    }
    if target == "APPROVED":
        values["approved_amount_cents"] = RefundRequest.requested_amount_cents

    result = db.session.execute(
        update(RefundRequest)
        .where(
            RefundRequest.id == refund.id,
            RefundRequest.tenant_id == tenant_id,
            RefundRequest.status == "PENDING",
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        db.session.rollback()
        db.session.refresh(refund)
        raise AlreadyProcessed(
            "Refund request has already been processed",
            details={"refund_id": refund.id, "status": refund.status},
        )
    if target == "APPROVED" and not _claim_amount(refund.order, refund.requested_amount_cents):
        db.session.rollback()
        db.session.refresh(refund.order)
        raise _balance_exceeded(refund.order, refund.requested_amount_cents)
    db.session.commit()
    db.session.refresh(refund)
    return refund


def approve_refund(tenant_id: int, refund_id: int, notes: str | None = None) -> RefundRequest:
    """Approve a PENDING request and settle it."""
    refund = _decide(tenant_id, refund_id, "APPROVED", notes)
    logger.info("Refund request %s approved", refund.id)
    notify(
        NotificationType.REFUND_APPROVED,
        refund.order,
        refund_amount_cents=refund.approved_amount_cents,
        note=refund.decision_notes,
    )
    return process_refund(tenant_id, refund.id)


def deny_refund(tenant_id: int, refund_id: int, notes: str | None = None) -> RefundRequest:
    refund = _decide(tenant_id, refund_id, "DENIED", notes)
    logger.info("Refund request %s denied", refund.id)
    notify(
        NotificationType.REFUND_DENIED,
        refund.order,
        refund_amount_cents=refund.requested_amount_cents,
        note=refund.decision_notes,
    )
    return refund


# =============================================================================
# Immediate refunds
# =============================================================================

def create_immediate_refund(tenant_id: int, order_id: int, amount_cents, reason: str | None = None) -> RefundRequest:
    """Operator refund of an arbitrary amount, approved and settled at once."""
    amount = coerce_int("amount_cents", amount_cents, minimum=1)
    order = get_order(tenant_id, order_id)
    _ensure_refundable(order)

    if amount > refundable_balance(order):
        raise _balance_exceeded(order, amount)

    now = utcnow()
    refund = RefundRequest(
        tenant_id=tenant_id,
        order_id=order.id,
        status="APPROVED",
        reason=(reason or "").strip() or "Manual refund",
        requested_amount_cents=amount,
        approved_amount_cents=amount,
        decision_at=now,
    )
    db.session.add(refund)
    try:
        # A concurrent refund may have taken the balance since it was read.
        if not _claim_amount(order, amount):
            db.session.rollback()
            db.session.refresh(order)
            raise _balance_exceeded(order, amount)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return process_refund(tenant_id, refund.id)


# =============================================================================
# Settlement
# =============================================================================

def _captured_payment(order: Order) -> PaymentTransaction | None:
    candidates = [
        p for p in order.payments
        if p.transaction_type == "PAYMENT" and p.status in (PaymentStatus.CAPTURED, PaymentStatus.AUTHORIZED)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: (p.processed_at or order.created_at, p.id))


def _call_gateway(order: Order, payment: PaymentTransaction | None, amount: int, reason: str | None) -> str:
    if payment is None or not payment.provider:
        logger.warning("No captured payment found for order %s; recording a manual refund", order.order_number)
        return PaymentStatus.REFUNDED

    request = RefundPaymentRequest(
        provider_reference=payment.provider_reference,
        amount_cents=amount,
        currency=order.currency,
        reason=reason,
    )
    try:
        status = get_orchestrator().refund(payment.provider, request, tenant_id=order.tenant_id)
    except Exception:
        logger.warning(
            "Failed to execute refund via provider %s for transaction %s",
            payment.provider, payment.provider_reference,
            exc_info=True,
        )
        return PaymentStatus.FAILED

    if status != PaymentStatus.REFUNDED:
        logger.warning("Provider %s answered %s for refund of %s", payment.provider, status, payment.provider_reference)
        return PaymentStatus.FAILED
    return status


def process_refund(tenant_id: int, refund_id: int) -> RefundRequest:
    """
    Settle an APPROVED request.

    Never raises for gateway failures; the outcome is on the returned request
    (REFUNDED or FAILED) and on the REFUND transaction it points at.
    """
    refund = get_refund_request(tenant_id, refund_id)
    if refund.status != "APPROVED":
        raise AlreadyProcessed(
            "Only approved refund requests can be settled",
            details={"refund_id": refund.id, "status": refund.status},
        )

    order = refund.order
    amount = abs(refund.approved_amount_cents or refund.requested_amount_cents)
    payment = _captured_payment(order)
    provider = payment.provider if payment is not None and payment.provider else MANUAL_PROVIDER

    # Gateway call with no write pending on the session.
    outcome = _call_gateway(order, payment, amount, refund.reason)

    def _op() -> RefundRequest:
        now = utcnow()
        transaction = PaymentTransaction(
            tenant_id=tenant_id,
            order_id=order.id,
            transaction_type="REFUND",
            provider=provider,
            provider_reference=f"refund_{uuid.uuid4().hex}",
            status=outcome,
            amount_cents=-amount,
            currency=order.currency,
            raw_payload={"refund_request_id": refund.id, "reason": refund.reason},
            processed_at=now if outcome == PaymentStatus.REFUNDED else None,
        )
        db.session.add(transaction)
        db.session.flush()
        refund.payment_transaction_id = transaction.id

        if outcome == PaymentStatus.REFUNDED:
            refund.status = "REFUNDED"
            refund.processed_at = now
            order.status = "REFUNDED"
            release_order_inventory(order)
        else:
            refund.status = "FAILED"
            _release_amount(order, amount)

        db.session.commit()
        return refund

    try:
        refund = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    if refund.status == "REFUNDED":
        logger.info("Refund %s settled for order %s (%s cents)", refund.id, order.order_number, amount)
        notify(
            NotificationType.REFUND_PROCESSED,
            order,
            refund_amount_cents=amount,
            note=refund.decision_notes or refund.reason,
        )
    else:
        logger.warning("Refund %s failed for order %s", refund.id, order.order_number)
        notify(
            NotificationType.REFUND_FAILED,
            order,
            refund_amount_cents=amount,
            note="The refund could not be processed. Please contact support.",
        )
    return refund
