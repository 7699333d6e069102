# Overview: Flask CLI command groups for bootstrap, inventory inspection, and maintenance.

# backend/o2c/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to o2c (PowerShell: $env:FLASK_APP="o2c").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory:
# - python -m flask inventory stock 12
#   Show stock on hand for product 12 (sum of its ledger movements).
# - python -m flask inventory receive 12 40 --reference PO-2026-0007
#   Book 40 units of product 12 into stock.
#
# Maintenance:
# - python -m flask maintenance cleanup-audit-events --retention-days 365
#   Delete LOW/MEDIUM audit events older than the retention window.

import click
from flask.cli import with_appcontext

from .errors import O2CError
from .extensions import db
from .services import inventory_service
from .services import maintenance_service
from .services import product_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Existing tables and data are left alone."""
    db.create_all()
    click.echo("PASS Database schema is up to date.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('inventory')
def inventory_group():
    """Stock ledger inspection and receipts."""


@inventory_group.command('stock')
@click.argument('product_id', type=int)
@with_appcontext
def stock(product_id):
    """Show stock on hand for a product."""
    try:
        product = product_service.get_product(product_id)
    except O2CError as e:
        raise click.ClickException(e.message)

    on_hand = inventory_service.current_stock(product.id)
    click.echo(f"{product.sku} ({product.name}): {on_hand} on hand")


@inventory_group.command('receive')
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@click.option('--reference', default='CLI-RECEIPT', show_default=True, help='Business key of the receipt')
@click.option('--reason', default='Stock received', show_default=True)
@click.option('--actor', 'actor_id', default='cli', show_default=True, help='Actor recorded on the movement')
@with_appcontext
def receive(product_id, quantity, reference, reason, actor_id):
    """Book QUANTITY units of PRODUCT_ID into stock."""
    try:
        movement = inventory_service.receive_stock(
            product_id=product_id,
            quantity=quantity,
            reference=reference,
            reason=reason,
            actor_id=actor_id,
        )
    except O2CError as e:
        raise click.ClickException(e.message)

    on_hand = inventory_service.current_stock(product_id)
    click.echo(f"PASS Received {movement.quantity_delta} units (movement {movement.id}); {on_hand} on hand.")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-audit-events')
@click.option('--retention-days', type=int, default=None, help='Defaults to AUDIT_RETENTION_DAYS (365)')
@with_appcontext
def cleanup_audit_events_cli(retention_days):
    """
    Cleanup old LOW/MEDIUM audit events.

    HIGH and CRITICAL events are never removed.
    """
    try:
        deleted = maintenance_service.cleanup_old_events(retention_days=retention_days)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--retention-days')
    click.echo(f"Deleted {deleted} audit events.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(maintenance_group)
