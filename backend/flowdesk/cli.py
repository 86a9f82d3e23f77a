# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/flowdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Owner (business account) management:
# - python -m flask owners list
#   List all owners with their currency and tax rate.
# - python -m flask owners create --name "Ada Stores" --email ada@example.com --currency NGN --tax-rate-bps 750
#   Create a new owner. Currency and tax rate default to the app configuration.
#
# Invoice maintenance:
# - python -m flask invoices refresh-overdue [--owner-id 1]
#   Mark unpaid invoices past their due date as overdue (all owners if omitted).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Owner, Product, Customer, Invoice, Sale
from .services import owner_service
from .services import invoice_service
from .validation import ValidationError, ConflictError, enforce_rules_owner


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables. Existing tables and data are left alone."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask owners create' to add an owner.")


# =============================================================================
# OWNER MANAGEMENT COMMANDS
# =============================================================================

@click.group('owners')
def owners_group():
    """Owner (business account) management commands."""


@owners_group.command('list')
@with_appcontext
def list_owners():
    """List all owners."""
    owners = owner_service.list_owners()

    if not owners:
        click.echo("No owners found.")
        return

    click.echo("\n" + "="*88)
    click.echo(f"{'ID':<5} {'Name':<28} {'Currency':<9} {'Tax bps':<8} {'Active':<7} {'Products':<9} {'Customers'}")
    click.echo("="*88)

    for owner in owners:
        product_count = db.session.query(Product).filter_by(owner_id=owner.id).count()
        customer_count = db.session.query(Customer).filter_by(owner_id=owner.id).count()
        active_str = "Yes" if owner.is_active else "No"

        click.echo(
            f"{owner.id:<5} {owner.name:<28} {owner.currency:<9} {owner.tax_rate_bps:<8} "
            f"{active_str:<7} {product_count:<9} {customer_count}"
        )

    click.echo("="*88 + "\n")


@owners_group.command('create')
@click.option('--name', required=True, help='Business name')
@click.option('--email', default=None, help='Contact email (unique)')
@click.option('--currency', default=None, help='Default currency (NGN, KES, GHS, ZAR, USD, EUR)')
@click.option('--tax-rate-bps', type=int, default=None, help='Sale tax rate in basis points (750 = 7.5%)')
@with_appcontext
def create_owner_cli(name, email, currency, tax_rate_bps):
    """Create a new owner."""
    patch = {"name": name, "email": email}
    if currency is not None:
        patch["currency"] = currency
    if tax_rate_bps is not None:
        patch["tax_rate_bps"] = tax_rate_bps

    try:
        enforce_rules_owner(patch)
        owner = owner_service.create_owner(patch=patch)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Created owner: {owner.name} (ID: {owner.id}, Currency: {owner.currency}, Tax: {owner.tax_rate_bps} bps)")


@owners_group.command('stats')
@click.option('--owner-id', type=int, required=True, help='Owner ID')
@with_appcontext
def owner_stats(owner_id):
    """Show document counts for an owner."""
    owner = db.session.get(Owner, owner_id)
    if not owner:
        click.echo(f"FAIL Owner ID {owner_id} not found")
        return

    invoices = db.session.query(Invoice).filter_by(owner_id=owner.id).count()
    overdue = db.session.query(Invoice).filter_by(owner_id=owner.id, status="overdue").count()
    sales = db.session.query(Sale).filter_by(owner_id=owner.id).count()

    click.echo(f"Owner {owner.id} ({owner.name})")
    click.echo(f"  Invoices: {invoices} ({overdue} overdue)")
    click.echo(f"  Sales:    {sales}")


# =============================================================================
# INVOICE MAINTENANCE COMMANDS
# =============================================================================

@click.group('invoices')
def invoices_group():
    """Invoice maintenance commands."""


@invoices_group.command('refresh-overdue')
@click.option('--owner-id', type=int, default=None, help='Limit to one owner (default: all owners)')
@with_appcontext
def refresh_overdue_cli(owner_id):
    """
    Mark unpaid invoices past their due date as overdue.

    Status is derived on every write, so this sweep only matters for
    invoices nobody touched after their due date passed. Safe to run from
    cron.
    """
    changed = invoice_service.refresh_overdue(owner_id=owner_id)
    click.echo(f"Marked {changed} invoice(s) overdue.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(owners_group)
    app.cli.add_command(invoices_group)
