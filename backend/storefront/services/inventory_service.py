# Overview: Inventory ledger; stock reservation, release and commitment for orders.

from __future__ import annotations

import logging

from sqlalchemy import case, update

from ..extensions import db
from ..models import Inventory, Order, Product, ProductVariant
from ..errors import InsufficientStock, InvalidRequest, NotFound
from storefront.time_utils import utcnow

logger = logging.getLogger(__name__)

"""
Storefront Inventory Invariants (authoritative)

Row resolution:
- A line with a variant uses the variant's row; if there is none, the product's
  variant-less row. No row at all means the item is not stock-tracked.

Counters:
- available = quantity_on_hand - reserved_quantity (floored at 0 for display).
- reserved_quantity never exceeds quantity_on_hand after reserve/release.
- reserve, release and commit are single conditional UPDATE statements. The
  database serializes them, so two checkouts can never both take the last unit.

Order linkage:
- Orders.inventory_released_at is claimed with a conditional UPDATE before any
  release or commitment, so each order gives its reservation back at most once
  no matter how many cancel/refund/webhook paths race for it.
"""


def resolve_inventory_row(tenant_id: int, product_id: int, variant_id: int | None) -> Inventory | None:
    if variant_id is not None:
        row = (
            db.session.query(Inventory)
            .filter_by(tenant_id=tenant_id, product_id=product_id, product_variant_id=variant_id)
            .first()
        )
        if row is not None:
            return row
    return (
        db.session.query(Inventory)
        .filter(
            Inventory.tenant_id == tenant_id,
            Inventory.product_id == product_id,
            Inventory.product_variant_id.is_(None),
        )
        .first()
    )


def available_quantity(tenant_id: int, product_id: int, variant_id: int | None = None) -> int | None:
    """Raw on_hand - reserved for the resolved row, or None when untracked."""
    row = resolve_inventory_row(tenant_id, product_id, variant_id)
    if row is None:
        return None
    return (row.quantity_on_hand or 0) - (row.reserved_quantity or 0)


def _group_by_row(tenant_id: int, lines) -> list[tuple[Inventory, int, str]]:
    """Aggregate line quantities per resolved inventory row, ordered by row id."""
    grouped: dict[int, list] = {}
    for line in lines:
        row = resolve_inventory_row(tenant_id, line.product_id, line.product_variant_id)
        if row is None:
            continue
        entry = grouped.setdefault(row.id, [row, 0, line.name or f"product {line.product_id}"])
        entry[1] += int(line.quantity)
    return [tuple(grouped[row_id]) for row_id in sorted(grouped)]


def reserve_stock(tenant_id: int, lines) -> None:
    """
    Reserve stock for every line, all or nothing.

    Runs inside the caller's transaction; a shortfall raises InsufficientStock
    naming the offending item and the caller must roll back, which also undoes
    any reservation already applied in this call.
    """
    now = utcnow()
    for row, quantity, name in _group_by_row(tenant_id, lines):
        if quantity <= 0:
            continue
        stmt = (
            update(Inventory)
            .where(
                Inventory.id == row.id,
                Inventory.quantity_on_hand - Inventory.reserved_quantity >= quantity,
            )
            .values(
                reserved_quantity=Inventory.reserved_quantity + quantity,
                last_adjusted_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise InsufficientStock(
                f"Insufficient stock for {name}",
                details={"inventory_id": row.id, "product_id": row.product_id, "requested": quantity},
            )


def _release_rows(tenant_id: int, lines, *, consume_on_hand: bool) -> None:
    now = utcnow()
    for row, quantity, _name in _group_by_row(tenant_id, lines):
        if quantity <= 0:
            continue
        values = {
            "reserved_quantity": case(
                (Inventory.reserved_quantity > quantity, Inventory.reserved_quantity - quantity),
                else_=0,
            ),
            "last_adjusted_at": now,
        }
        if consume_on_hand:
            values["quantity_on_hand"] = case(
                (Inventory.quantity_on_hand > quantity, Inventory.quantity_on_hand - quantity),
                else_=0,
            )
        stmt = (
            update(Inventory)
            .where(Inventory.id == row.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(stmt)


def release_stock(tenant_id: int, lines) -> None:
    """Give reserved units back, flooring reserved_quantity at 0."""
    _release_rows(tenant_id, lines, consume_on_hand=False)


def _claim_order_release(order: Order) -> bool:
    now = utcnow()
    stmt = (
        update(Order)
        .where(Order.id == order.id, Order.inventory_released_at.is_(None))
        .values(inventory_released_at=now)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return False
    order.inventory_released_at = now
    return True


def release_order_inventory(order: Order) -> bool:
    """
    Release an order's reservation exactly once.

    Returns False when the order already gave its stock back (or shipped).
    """
    if not _claim_order_release(order):
        logger.debug("Inventory for order %s already released", order.order_number)
        return False
    release_stock(order.tenant_id, order.items)
    return True


def commit_order_inventory(order: Order) -> bool:
    """
    Turn an order's reservation into a sale at shipment: on-hand and reserved
    both drop by the ordered quantity.
    """
    if not _claim_order_release(order):
        return False
    _release_rows(order.tenant_id, order.items, consume_on_hand=True)
    return True


# =============================================================================
# Stock administration (CLI and tests)
# =============================================================================

def set_stock(
    tenant_id: int,
    product_id: int,
    quantity_on_hand: int,
    *,
    variant_id: int | None = None,
    reserved_quantity: int | None = None,
) -> Inventory:
    """Create or overwrite the stock row for a product/variant. Caller commits."""
    if quantity_on_hand is None or int(quantity_on_hand) < 0:
        raise InvalidRequest("quantity_on_hand must be >= 0")

    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None:
        raise NotFound("Product not found")
    if variant_id is not None:
        variant = (
            db.session.query(ProductVariant)
            .filter_by(id=variant_id, product_id=product_id, tenant_id=tenant_id)
            .first()
        )
        if variant is None:
            raise NotFound("Variant not found")

    query = db.session.query(Inventory).filter(
        Inventory.tenant_id == tenant_id,
        Inventory.product_id == product_id,
    )
    if variant_id is None:
        query = query.filter(Inventory.product_variant_id.is_(None))
    else:
        query = query.filter(Inventory.product_variant_id == variant_id)
    row = query.first()

    if row is None:
        row = Inventory(
            tenant_id=tenant_id,
            product_id=product_id,
            product_variant_id=variant_id,
            reserved_quantity=0,
        )
        db.session.add(row)

    row.quantity_on_hand = int(quantity_on_hand)
    if reserved_quantity is not None:
        row.reserved_quantity = int(reserved_quantity)
    row.last_adjusted_at = utcnow()
    db.session.flush()
    return row
