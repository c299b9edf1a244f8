# Overview: Allocates human-readable, never-reused document numbers per tenant.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..errors import InvalidRequest


ORDER_DOCUMENT_TYPE = "ORDER"
ORDER_PREFIX = "ORD"


def _current_next(tenant_id: int, document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(tenant_id=tenant_id, document_type=document_type)
        .scalar()
    )


def next_document_number(
    *,
    tenant_id: int,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for a tenant/type inside the current transaction.

    The increment is a single conditional UPDATE, so two transactions can never
    observe the same value. The number is only consumed if the caller commits;
    a rolled-back checkout gives it back.

    The first allocation for a tenant/type inserts the sequence row. A racing
    insert loses on the unique constraint and falls back to the UPDATE path.
    """
    if not tenant_id:
        raise InvalidRequest("tenant_id is required")
    if not document_type:
        raise InvalidRequest("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.tenant_id == tenant_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_next(tenant_id, document_type) - 1
    else:
        seq = DocumentSequence(tenant_id=tenant_id, document_type=document_type, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_next(tenant_id, document_type) - 1

    return f"{prefix}-{next_num:0{pad}d}"


def next_order_number(tenant_id: int) -> str:
    """e.g. ORD-000001"""
    return next_document_number(
        tenant_id=tenant_id,
        document_type=ORDER_DOCUMENT_TYPE,
        prefix=ORDER_PREFIX,
    )
