from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


REFUND_STATUSES = ("PENDING", "APPROVED", "DENIED", "REFUNDED", "FAILED")


class RefundRequest(db.Model):
    """
    Customer or operator refund request.

    LIFECYCLE:
    - PENDING -> APPROVED -> REFUNDED | FAILED (settlement)
    - PENDING -> DENIED
    - immediate refunds are created APPROVED and settled at once

    requested_amount_cents is fixed at creation; approved_amount_cents is set
    once, on approval. The PENDING -> APPROVED/DENIED move is a conditional
    UPDATE so concurrent decisions cannot both win.
    """
    __tablename__ = "refund_requests"
    __table_args__ = (
        db.Index("ix_refund_requests_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    reason = db.Column(db.String(500), nullable=True)
    decision_notes = db.Column(db.String(500), nullable=True)

    requested_amount_cents = db.Column(db.Integer, nullable=False)
    approved_amount_cents = db.Column(db.Integer, nullable=True)

    payment_transaction_id = db.Column(db.Integer, db.ForeignKey("payment_transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    decision_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship("RefundRequestItem", lazy="selectin", order_by="RefundRequestItem.id")
    order = db.relationship("Order")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "reason": self.reason,
            "decision_notes": self.decision_notes,
            "requested_amount_cents": self.requested_amount_cents,
            "approved_amount_cents": self.approved_amount_cents,
            "payment_transaction_id": self.payment_transaction_id,
            "created_at": to_utc_z(self.created_at),
            "decision_at": to_utc_z(self.decision_at) if self.decision_at else None,
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "items": [item.to_dict() for item in self.items],
        }


class RefundRequestItem(db.Model):
    __tablename__ = "refund_request_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    refund_request_id = db.Column(db.Integer, db.ForeignKey("refund_requests.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_item_id": self.order_item_id,
            "quantity": self.quantity,
            "amount_cents": self.amount_cents,
        }
