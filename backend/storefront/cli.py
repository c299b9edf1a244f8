# Overview: Flask CLI command groups for bootstrap and store administration.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management (MULTI-TENANT):
# - python -m flask tenants list
# - python -m flask tenants create --name "Acme Store" --code acme --currency USD
#
# Catalog/stock:
# - python -m flask inventory set --tenant acme --product-id 1 --on-hand 25 [--variant-id 3]
#
# Promotions:
# - python -m flask promotions create-coupon --tenant acme --code SAVE10 --type PERCENTAGE --value 1000
#   value is basis points for PERCENTAGE and cents for FIXED_AMOUNT.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import StorefrontError
from .models import Tenant
from .services import inventory_service, promotions_service, tenant_service
from .models.promotions import DISCOUNT_TYPES, APPLICABILITY_TYPES


def _tenant_or_fail(raw: str) -> Tenant:
    try:
        return tenant_service.resolve_tenant(raw)
    except StorefrontError as e:
        raise click.ClickException(e.message)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create every table that does not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('tenants')
def tenants_group():
    """Tenant (storefront) management."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()
    if not tenants:
        click.echo("No tenants found")
        return
    for t in tenants:
        status = "active" if t.is_active else "inactive"
        click.echo(f"{t.id}\t{t.code}\t{t.name}\t{t.default_currency}\t{status}")


@tenants_group.command('create')
@click.option('--name', required=True, help='Display name')
@click.option('--code', required=True, help='Unique tenant code (used in X-Tenant-ID)')
@click.option('--currency', default='USD', show_default=True, help='Default currency')
@with_appcontext
def create_tenant(name, code, currency):
    try:
        tenant = tenant_service.create_tenant(name, code, currency)
    except StorefrontError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created tenant {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


@click.group('inventory')
def inventory_group():
    """Stock administration."""


@inventory_group.command('set')
@click.option('--tenant', 'tenant_ref', required=True, help='Tenant id or code')
@click.option('--product-id', required=True, type=int)
@click.option('--variant-id', type=int, default=None)
@click.option('--on-hand', required=True, type=int, help='Physical quantity on hand')
@click.option('--reserved', type=int, default=None, help='Overwrite the reserved quantity')
@with_appcontext
def set_inventory(tenant_ref, product_id, variant_id, on_hand, reserved):
    tenant = _tenant_or_fail(tenant_ref)
    try:
        row = inventory_service.set_stock(
            tenant.id,
            product_id,
            on_hand,
            variant_id=variant_id,
            reserved_quantity=reserved,
        )
        db.session.commit()
    except StorefrontError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    click.echo(
        f"PASS Inventory {row.id}: on hand {row.quantity_on_hand}, "
        f"reserved {row.reserved_quantity}, available {row.available_quantity}"
    )


@click.group('promotions')
def promotions_group():
    """Coupon and campaign administration."""


@promotions_group.command('create-coupon')
@click.option('--tenant', 'tenant_ref', required=True, help='Tenant id or code')
@click.option('--code', required=True)
@click.option('--type', 'discount_type', required=True, type=click.Choice(DISCOUNT_TYPES, case_sensitive=False))
@click.option('--value', required=True, type=int, help='Basis points (PERCENTAGE) or cents (FIXED_AMOUNT)')
@click.option('--applicability', default='CART', show_default=True, type=click.Choice(APPLICABILITY_TYPES, case_sensitive=False))
@click.option('--product-id', type=int, default=None)
@click.option('--category-id', type=int, default=None)
@click.option('--minimum-order-cents', type=int, default=None)
@click.option('--usage-limit', type=int, default=None)
@click.option('--starts-at', default=None, help='ISO-8601 start')
@click.option('--ends-at', default=None, help='ISO-8601 end')
@with_appcontext
def create_coupon(tenant_ref, code, discount_type, value, applicability, product_id, category_id,
                  minimum_order_cents, usage_limit, starts_at, ends_at):
    tenant = _tenant_or_fail(tenant_ref)
    data = {
        'code': code,
        'discount_type': discount_type.upper(),
        'value': value,
        'applicability': applicability.upper(),
        'target_product_id': product_id,
        'target_category_id': category_id,
        'minimum_order_cents': minimum_order_cents,
        'usage_limit': usage_limit,
        'starts_at': starts_at,
        'ends_at': ends_at,
    }
    try:
        coupon = promotions_service.create_coupon(tenant.id, data)
    except StorefrontError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    click.echo(f"PASS Created coupon {coupon.code} (ID: {coupon.id})")


@promotions_group.command('list')
@click.option('--tenant', 'tenant_ref', required=True, help='Tenant id or code')
@click.option('--active-only', is_flag=True, default=False)
@with_appcontext
def list_promotions(tenant_ref, active_only):
    tenant = _tenant_or_fail(tenant_ref)
    coupons = promotions_service.list_coupons(tenant.id, active_only=active_only)
    campaigns = promotions_service.list_campaigns(tenant.id, active_only=active_only)
    if not coupons and not campaigns:
        click.echo("No promotions found")
        return
    for c in coupons:
        limit = c['usage_limit'] if c['usage_limit'] is not None else '-'
        click.echo(f"coupon\t{c['id']}\t{c['code']}\t{c['discount_type']}\t{c['value']}\t{c['times_redeemed']}/{limit}")
    for c in campaigns:
        click.echo(f"campaign\t{c['id']}\t{c['name']}\t{c['discount_type']}\t{c['value']}\tpriority {c['priority']}")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(promotions_group)
