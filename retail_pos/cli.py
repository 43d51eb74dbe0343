# Overview: Flask CLI command groups for bootstrap and inventory inspection.

# retail_pos/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="retail_pos"; bash: export FLASK_APP=retail_pos).
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Use `flask db upgrade` for migrations.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo employee, customer, category, supplier and a few products.
#
# Inventory inspection:
# - python -m flask inventory low-stock
#   List products at or below their minimum stock.
# - python -m flask inventory verify-chain [--product-id 1]
#   Check that inventory logs reconstruct each product's stock.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Employee
from .services import catalog_service, inventory_service
from .services.errors import UnknownReference


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema ready")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo master data (skipped when an employee already exists)."""
    if db.session.query(Employee).first():
        click.echo("WARN Data already present, skipping seed")
        return

    employee = catalog_service.create_employee(patch={
        "first_name": "Dana", "last_name": "Clerk", "email": "cashier@pos.local", "role": "cashier",
    })
    customer = catalog_service.create_customer(patch={
        "first_name": "Walk", "last_name": "In", "email": "walkin@pos.local",
    })
    category = catalog_service.create_category(patch={"name": "General"})
    supplier = catalog_service.create_supplier(patch={"name": "Default Supplier"})

    demo_products = [
        ("SKU-0001", "Notebook", 450, 200, 40, 10),
        ("SKU-0002", "Ballpoint Pen", 150, 50, 120, 25),
        ("SKU-0003", "Desk Lamp", 5000, 3200, 6, 5),
    ]
    for sku, name, price, cost, stock, min_stock in demo_products:
        catalog_service.create_product(
            patch={
                "sku": sku,
                "name": name,
                "price_cents": price,
                "cost_cents": cost,
                "stock": stock,
                "min_stock": min_stock,
                "category_id": category.id,
                "supplier_id": supplier.id,
            },
            employee_id=employee.id,
        )

    click.echo(f"PASS Seeded employee {employee.id}, customer {customer.id}, {len(demo_products)} products")


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('low-stock')
@with_appcontext
def low_stock():
    """List products where stock <= min_stock."""
    products = inventory_service.get_low_stock_products()
    if not products:
        click.echo("PASS No products below minimum stock")
        return
    for p in products:
        click.echo(f"LOW  {p.sku:<16} {p.name:<32} stock={p.stock} min={p.min_stock}")


@inventory_group.command('verify-chain')
@click.option('--product-id', type=int, default=None, help='Only check one product')
@with_appcontext
def verify_chain(product_id):
    """Verify inventory log chains against live stock."""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    failures = 0
    for pid in product_ids:
        try:
            problems = inventory_service.verify_inventory_chain(pid)
        except UnknownReference as e:
            raise click.ClickException(str(e))
        if problems:
            failures += 1
            click.echo(f"FAIL product {pid}: {problems}")
        else:
            click.echo(f"PASS product {pid}")

    if failures:
        raise click.ClickException(f"{failures} product(s) with broken inventory chains")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
