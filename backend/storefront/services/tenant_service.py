"""
Tenant Resolver: tenant lookup and request scoping helpers.

Every request is scoped to exactly one storefront tenant. Routes establish it
with @require_tenant (which sets g.tenant_id); services never read g and take
tenant_id as an explicit argument instead.

INVARIANTS:
1. Every storefront request has g.tenant_id set
2. Every query on tenant-owned tables filters by that tenant_id
3. Rows belonging to another tenant are reported as not found, never as forbidden
"""

from __future__ import annotations

import logging

from flask import current_app, g

from ..extensions import db
from ..models import Tenant
from ..errors import InvalidRequest, NotFound

logger = logging.getLogger(__name__)


class TenantContextError(Exception):
    """Raised when code that needs a tenant runs outside a tenant-scoped request."""
    pass


def get_current_tenant_id() -> int:
    if getattr(g, 'tenant_id', None) is None:
        raise TenantContextError("Tenant context not established")
    return g.tenant_id


def resolve_tenant(raw_tenant: str | None) -> Tenant:
    """
    Resolve an X-Tenant-ID header value (numeric id or tenant code).

    Inactive tenants resolve as not found.
    """
    raw = (raw_tenant or "").strip()
    if not raw:
        raise InvalidRequest("X-Tenant-ID header is required")

    query = db.session.query(Tenant)
    if raw.isdigit():
        tenant = query.filter(Tenant.id == int(raw)).first()
    else:
        tenant = query.filter(Tenant.code == raw.lower()).first()

    if tenant is None or not tenant.is_active:
        logger.info("Request for unknown or inactive tenant %r", raw)
        raise NotFound("Tenant not found")
    return tenant


def tenant_currency(tenant_id: int) -> str:
    currency = (
        db.session.query(Tenant.default_currency)
        .filter(Tenant.id == tenant_id)
        .scalar()
    )
    if not currency:
        return current_app.config.get("DEFAULT_CURRENCY", "USD")
    return currency


def create_tenant(name: str, code: str, default_currency: str = "USD") -> Tenant:
    name = (name or "").strip()
    code = (code or "").strip().lower()
    if not name:
        raise InvalidRequest("name is required")
    if not code:
        raise InvalidRequest("code is required")
    if db.session.query(Tenant).filter_by(code=code).first():
        raise InvalidRequest(f"Tenant code {code} already exists")

    tenant = Tenant(
        name=name,
        code=code,
        default_currency=(default_currency or "USD").upper(),
        is_active=True,
    )
    db.session.add(tenant)
    db.session.commit()
    return tenant
