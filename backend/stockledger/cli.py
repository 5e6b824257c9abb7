# Overview: Flask CLI command groups for bootstrap, ledger checks, and the inventory reversal tool.

# backend/stockledger/cli.py
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
# Stock inspection:
# - python -m flask stock verify [--warehouse-id 1]
#   Compare every stock level with the signed sum of its movements.
# - python -m flask stock reorder [--warehouse-id 1]
#   List items at or below their reorder point with suggested quantities.
#
# Physical inventory (privileged):
# - python -m flask inventory revert --number INV-000001 --actor admin --reason "Wrong warehouse" --yes
#   Undo an APPROVED physical inventory: reverse and delete its movements, mark it CANCELLED.

import click
from flask.cli import with_appcontext

from .errors import StockLedgerError
from .extensions import db
from .quantities import quantity_to_json


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('verify')
@click.option('--warehouse-id', type=int, help='Limit to one warehouse')
@with_appcontext
def verify_cli(warehouse_id):
    """
    Check that every stock level matches its movement history.

    Example:
        flask stock verify
        flask stock verify --warehouse-id 1
    """
    from .services.stock_service import verify_ledger

    mismatches = verify_ledger(warehouse_id=warehouse_id)

    if not mismatches:
        click.echo("PASS Stock levels match the movement ledger.")
        return

    click.echo(f"FAIL {len(mismatches)} stock level(s) do not match the ledger")
    click.echo("\n" + "="*90)
    click.echo(f"{'Warehouse':<10} {'Zone':<6} {'Product':<9} {'Variant':<9} {'Level':<14} {'Ledger'}")
    click.echo("="*90)

    for row in mismatches:
        level = row["level_quantity"]
        click.echo(
            f"{row['warehouse_id']:<10} {row['zone_id'] or '-':<6} {row['product_id']:<9} "
            f"{row['variant_id'] or '-':<9} {'missing' if level is None else str(quantity_to_json(level)):<14} "
            f"{quantity_to_json(row['ledger_quantity'])}"
        )

    click.echo("="*90 + "\n")


@stock_group.command('reorder')
@click.option('--warehouse-id', type=int, help='Limit to one warehouse')
@with_appcontext
def reorder_cli(warehouse_id):
    """
    List reorder suggestions, largest first.

    Example:
        flask stock reorder --warehouse-id 1
    """
    from .services.reorder_service import reorder_suggestions

    rows = reorder_suggestions(warehouse_id=warehouse_id)

    if not rows:
        click.echo("No items need reordering.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'Warehouse':<20} {'SKU':<16} {'Product':<30} {'On hand':<10} {'Min':<8} {'Max':<8} {'Suggested'}")
    click.echo("="*100)

    for row in rows:
        click.echo(
            f"{row['warehouse_name'][:19]:<20} {row['sku'][:15]:<16} {row['product_name'][:29]:<30} "
            f"{quantity_to_json(row['on_hand']):<10} {quantity_to_json(row['min_stock']):<8} "
            f"{quantity_to_json(row['max_stock']):<8} {quantity_to_json(row['suggested_quantity'])}"
        )

    click.echo("="*100 + "\n")


@click.group('inventory')
def inventory_group():
    """Physical inventory maintenance (privileged)."""


@inventory_group.command('revert')
@click.option('--number', required=True, help='Inventory number, e.g. INV-000001')
@click.option('--actor', required=True, help='Operator performing the reversal')
@click.option('--reason', required=True, help='Why the approval is being undone')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def revert_inventory_cli(number, actor, reason, yes):
    """
    Revert an APPROVED physical inventory.

    Every movement the approval posted is reversed on its stock level and
    deleted; the inventory becomes CANCELLED.

    Example:
        flask inventory revert --number INV-000001 --actor admin --reason "Counted wrong warehouse"
    """
    from .services.inventory_reversal_service import revert_approved_inventory
    from .services.physical_inventory_service import get_physical_inventory_by_number

    try:
        inventory = get_physical_inventory_by_number(number)

        if not yes:
            click.confirm(
                f"WARN This will delete the ledger movements of {inventory.number}. Continue?",
                abort=True,
            )

        result = revert_approved_inventory(inventory.id, actor, reason)
    except StockLedgerError as e:
        click.echo(f"FAIL {str(e)}")
        return

    removed = result["removed_movements"]
    click.echo(f"PASS Reverted {result['inventory']['number']}: {len(removed)} movement(s) removed")
    for row in removed:
        click.echo(
            f"   movement {row['id']}: product {row['product_id']} "
            f"zone {row['zone_id'] or '-'} reversed by {quantity_to_json(row['reversed_by'])}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(inventory_group)
