# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/wms/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@wms.local]
#   Idempotent bootstrap: creates tables, the admin user and the main warehouse.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Load a small demo catalog (category, brand, customer, products with stock).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users and their active status.
# - python -m flask users create --name "Ana" --email ana@wms.local
#   Create an acting user for the X-User-Id header.
#
# Inventory inspection:
# - python -m flask inventory verify-ledger [--product-id 1]
#   Check product quantities against the movement ledger; exits 1 on drift.
# - python -m flask inventory movements --product-id 1 [--limit 20]
#   Show the latest stock movements of a product.
#
# Sales maintenance:
# - python -m flask sales mark-overdue
#   Flag completed, unpaid sales whose due date passed as overdue.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Warehouse, Product, Category, Brand, Customer
from .services.concurrency import run_in_transaction
from .services.movement_service import list_movements, verify_product_ledger
from .services.payment_service import refresh_overdue_sales
from .services.products_service import create_product
from .services.warehouse_service import create_warehouse
from .services import catalog_service, customer_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-name', default='Administrator', help='Name of the default user')
@click.option('--admin-email', default='admin@wms.local', help='Email of the default user')
@click.option('--warehouse-name', default='Main Warehouse', help='Name of the main warehouse')
@with_appcontext
def init_system(admin_name, admin_email, warehouse_name):
    """
    Initialize the system: schema, default user and main warehouse.

    Safe to run repeatedly; existing rows are left alone.
    """
    click.echo("START Initializing warehouse system...")
    db.create_all()

    user = db.session.query(User).filter_by(email=admin_email).first()
    if user is None:
        user = User(name=admin_name, email=admin_email, is_active=True)
        db.session.add(user)
        db.session.commit()
        click.echo(f"PASS Created user: {user.name} ({user.email}) ID {user.id}")
    else:
        click.echo(f"WARN  User '{admin_email}' already exists, skipping...")

    main = db.session.query(Warehouse).filter(Warehouse.is_main.is_(True)).first()
    if main is None:
        main = run_in_transaction(lambda: create_warehouse({"name": warehouse_name}, is_main=True))
        click.echo(f"PASS Created main warehouse: {main.name} ({main.code})")
    else:
        click.echo(f"PASS Using existing main warehouse: {main.name} ({main.code})")

    click.echo("\nDONE System initialized. Send 'X-User-Id: %s' with write requests." % user.id)


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


DEMO_PRODUCTS = [
    # sku, name, price, cost, opening quantity, min level
    ("DEMO-001", "Cuaderno argollado", 8_500_00, 5_000_00, 40, 10),
    ("DEMO-002", "Lapicero negro", 1_200_00, 600_00, 200, 50),
    ("DEMO-003", "Resma papel carta", 24_000_00, 18_000_00, 5, 8),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Load a small demo catalog. Requires 'system init' first."""
    user = db.session.query(User).order_by(User.id).first()
    main = db.session.query(Warehouse).filter(Warehouse.is_main.is_(True)).first()
    if user is None or main is None:
        click.echo("FAIL Run: python -m flask system init")
        return

    def _seed():
        category = db.session.query(Category).filter_by(name="Papeleria", parent_id=None).first()
        if category is None:
            category = catalog_service.create_category({"name": "Papeleria"})
        brand = db.session.query(Brand).filter_by(name="Generica").first()
        if brand is None:
            brand = catalog_service.create_brand({"name": "Generica"})
        if db.session.query(Customer).filter_by(email="cliente@demo.local").first() is None:
            customer_service.create_customer({
                "name": "Cliente Demo",
                "email": "cliente@demo.local",
                "document_type": "CC",
                "tax_id": "1020304050",
                "customer_type": "individual",
                "payment_terms": "net_30",
                "credit_limit_cents": 500_000_00,
            })

        created = 0
        for sku, name, price, cost, quantity, min_level in DEMO_PRODUCTS:
            if db.session.query(Product.id).filter_by(sku=sku).first() is not None:
                continue
            create_product(
                patch={
                    "sku": sku,
                    "name": name,
                    "category_id": category.id,
                    "brand_id": brand.id,
                    "unit_price_cents": price,
                    "cost_cents": cost,
                    "min_stock_level": min_level,
                },
                initial_quantity=quantity,
                user_id=user.id,
                warehouse_id=main.id,
            )
            created += 1
        return created

    created = run_in_transaction(_seed)
    click.echo(f"PASS Demo data loaded ({created} new products)")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 70)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<30} {'Active'}")
    click.echo("=" * 70)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<30} {active_str}")
    click.echo("=" * 70 + "\n")


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email (unique)')
@with_appcontext
def create_user_cli(name, email):
    """Create an acting user."""
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL User with email '{email}' already exists")
        return
    user = User(name=name, email=email, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.name} (ID: {user.id})")


# =============================================================================
# INVENTORY COMMANDS
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Stock inspection commands."""


@inventory_group.command('verify-ledger')
@click.option('--product-id', type=int, help='Check a single product')
@with_appcontext
def verify_ledger_cli(product_id):
    """
    Compare every product's quantity with its movement history.

    Exits with status 1 when any product has drifted from its ledger.
    """
    query = db.session.query(Product).order_by(Product.id)
    if product_id is not None:
        query = query.filter(Product.id == product_id)
    products = query.all()

    problems = []
    for product in products:
        problems.extend(verify_product_ledger(product))

    if problems:
        for line in problems:
            click.echo(f"FAIL {line}")
        raise SystemExit(1)
    click.echo(f"PASS {len(products)} products consistent with the movement ledger")


@inventory_group.command('movements')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def movements_cli(product_id, limit):
    """Show the latest movements of one product."""
    movements = list_movements(product_id=product_id).limit(limit).all()
    if not movements:
        click.echo("No movements found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<6} {'Type':<20} {'Delta':>7} {'Before':>7} {'After':>7}  {'Reference':<20} {'When'}")
    click.echo("=" * 90)
    for m in movements:
        reference = f"{m.reference_type or '-'}#{m.reference_id or '-'}"
        when = m.created_at.strftime('%Y-%m-%d %H:%M') if m.created_at else '-'
        click.echo(
            f"{m.id:<6} {m.type:<20} {m.quantity_delta:>7} {m.previous_quantity:>7} "
            f"{m.new_quantity:>7}  {reference:<20} {when}"
        )
    click.echo("=" * 90 + "\n")


# =============================================================================
# SALES COMMANDS
# =============================================================================

@click.group('sales')
def sales_group():
    """Sales maintenance commands."""


@sales_group.command('mark-overdue')
@with_appcontext
def mark_overdue_cli():
    """Recompute payment status of unpaid sales past their due date."""
    changed = run_in_transaction(refresh_overdue_sales)
    click.echo(f"PASS {changed} sales marked overdue")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(sales_group)
