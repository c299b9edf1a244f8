from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every storefront is a Tenant.

    Provisioning happens elsewhere; the order pipeline only reads tenants to
    scope rows. Every pipeline table carries tenant_id and every query filters
    on it.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    default_currency = db.Column(db.String(3), nullable=False, default="USD")
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "default_currency": self.default_currency,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """Per-tenant counter for human-readable document numbers (orders)."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "document_type", name="uq_document_sequences_tenant_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
