# Overview: Flask CLI command groups for bootstrap, stock operations and reporting.

# backend/retailpos/cli.py
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
# - python -m flask system seed-demo
#   Create the default location, a back-room location and sample products with stock.
#
# Inventory:
# - python -m flask inventory check-low-stock
#   List products at or below their reorder point.
# - python -m flask inventory transfer --product-id 1 --from 1 --to 2 --quantity 5 --user-id 1
#   Move on-hand units between locations.
#
# Reports:
# - python -m flask reports dashboard --days 14
#   Print dashboard metrics as JSON.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .config import current_settings
from .extensions import db
from .models import InventoryLocation, Product, StockLevel, Supplier
from .services import dashboard_service, stock_service, transfer_service
from .validation import RetailPosError


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


DEMO_PRODUCTS = (
    # barcode, name, price_cents, cost_cents, floor qty, back-room qty, reorder point
    ("8990001000011", "Mineral Water 600ml", 400000, 250000, 40, 80, None),
    ("8990001000028", "Instant Noodles", 350000, 220000, 6, 0, 12),
    ("8990001000035", "Ground Coffee 200g", 4500000, 3100000, 8, 4, None),
    ("8990001000042", "Rice 5kg", 7500000, 6200000, 15, 30, 20),
)


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Create demo locations, a supplier and products with ledger rows (idempotent).

    Every product's stock equals the sum of its ledger rows.
    """
    click.echo("START Seeding demo data...")

    floor = db.session.query(InventoryLocation).filter_by(code="FLOOR").first()
    if not floor:
        floor = InventoryLocation(name="Shop Floor", code="FLOOR", is_default=True)
        db.session.add(floor)
    back_room = db.session.query(InventoryLocation).filter_by(code="BACK").first()
    if not back_room:
        back_room = InventoryLocation(name="Back Room", code="BACK", is_default=False)
        db.session.add(back_room)

    supplier = db.session.query(Supplier).filter_by(name="Demo Wholesale").first()
    if not supplier:
        supplier = Supplier(name="Demo Wholesale", contact_email="orders@wholesale.example", lead_time_days=3)
        db.session.add(supplier)
    db.session.flush()

    created = 0
    for barcode, name, price, cost, floor_qty, back_qty, reorder_point in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(barcode=barcode).first():
            continue
        product = Product(
            supplier_id=supplier.id,
            barcode=barcode,
            name=name,
            price_cents=price,
            cost_price_cents=cost,
            stock=floor_qty + back_qty,
            reorder_point=reorder_point,
        )
        db.session.add(product)
        db.session.flush()
        db.session.add(StockLevel(product_id=product.id, location_id=floor.id, quantity=floor_qty))
        db.session.add(StockLevel(product_id=product.id, location_id=back_room.id, quantity=back_qty))
        created += 1

    db.session.commit()
    click.echo(f"PASS Locations: {floor.code} (ID: {floor.id}, default), {back_room.code} (ID: {back_room.id})")
    click.echo(f"PASS Created {created} product(s)")


@click.group('inventory')
def inventory_group():
    """Stock ledger inspection and operations."""


@inventory_group.command('check-low-stock')
@click.option('--threshold', type=int, default=None, help='Fallback reorder point (defaults to config)')
@with_appcontext
def check_low_stock(threshold):
    """List products at or below their reorder point."""
    if threshold is None:
        threshold = current_settings().low_stock_threshold

    products = stock_service.low_stock_products(threshold)
    if not products:
        click.echo("PASS No products are below their reorder point.")
        return

    click.echo(f"WARN {len(products)} product(s) at or below reorder point:")
    for product in products:
        click.echo(
            f"  [{product.id}] {product.name}: stock {product.stock} "
            f"(reorder point {product.effective_reorder_point(threshold)})"
        )
    current_app.logger.info("Low stock check found %d product(s)", len(products))


@inventory_group.command('transfer')
@click.option('--product-id', type=int, required=True)
@click.option('--from', 'source_location_id', type=int, required=True, help='Source location ID')
@click.option('--to', 'destination_location_id', type=int, required=True, help='Destination location ID')
@click.option('--quantity', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@click.option('--notes', default=None)
@with_appcontext
def transfer(product_id, source_location_id, destination_location_id, quantity, user_id, notes):
    """Move on-hand units of a product between two locations."""
    try:
        record = transfer_service.transfer(
            product_id=product_id,
            source_location_id=source_location_id,
            destination_location_id=destination_location_id,
            quantity=quantity,
            user_id=user_id,
            notes=notes,
        )
    except RetailPosError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(
        f"PASS Transfer {record.id}: moved {record.quantity} unit(s) of product {record.product_id} "
        f"from location {record.source_location_id} to {record.destination_location_id}"
    )


@click.group('reports')
def reports_group():
    """Read-only reports."""


@reports_group.command('dashboard')
@click.option('--days', type=int, default=None, help='Range in days (defaults to config)')
@with_appcontext
def dashboard(days):
    """Print dashboard metrics as JSON."""
    metrics = dashboard_service.dashboard_metrics(days)
    click.echo(json.dumps(metrics, indent=2, default=str))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(reports_group)
