# Overview: Flask CLI command groups for bootstrap, seeding, cash floats and cache inspection.

# backend/receivables/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to receivables (PowerShell: $env:FLASK_APP="receivables").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migration-managed databases).
# - python -m flask system create-user --username cashier --name "Front Cashier"
#   Create an acting user.
#
# Seeding (the sales flow itself lives outside this service):
# - python -m flask customers create --name "Acme Ltd" --phone 555-0100
# - python -m flask sales record-credit --customer-id 1 --invoice-no INV-0001 --total-cents 50000 --due-date 2026-11-01
#
# Cash floats:
# - python -m flask registers open --user-id 1 --opening-cents 10000
# - python -m flask registers close --user-id 1 --closing-cents 12500
# - python -m flask money-boxes create --name Safe --user-id 1 --initial-cents 0
# - python -m flask money-boxes list
#
# Cache:
# - python -m flask cache stats
# - python -m flask cache clear

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Customer
from .services import register_service, money_box_service, debt_service
from .services.cache_service import get_cache_coordinator
from .validation import ReceivablesError


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables on the configured database."""
    db.create_all()
    click.echo(f"PASS Tables created on {current_app.config['SQLALCHEMY_DATABASE_URI']}")


@system_group.command('create-user')
@click.option('--username', required=True, help='Unique username')
@click.option('--name', required=True, help='Display name')
@with_appcontext
def create_user_cli(username, name):
    """Create an acting user (cashier / collector)."""
    if db.session.query(User).filter_by(username=username).first():
        raise click.ClickException(f"User '{username}' already exists")
    user = User(username=username, name=name, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.username} (ID: {user.id})")


# =============================================================================
# CUSTOMERS / SALES
# =============================================================================

@click.group('customers')
def customers_group():
    """Customer seeding commands."""


@customers_group.command('create')
@click.option('--name', required=True, help='Customer name')
@click.option('--phone', default=None, help='Phone number')
@click.option('--email', default=None, help='Email')
@with_appcontext
def create_customer_cli(name, phone, email):
    customer = Customer(name=name.strip(), phone=phone, email=email)
    db.session.add(customer)
    db.session.commit()
    click.echo(f"PASS Created customer {customer.name} (ID: {customer.id})")


@click.group('sales')
def sales_group():
    """Credit sale seeding commands."""


@sales_group.command('record-credit')
@click.option('--customer-id', type=int, required=True)
@click.option('--invoice-no', required=True)
@click.option('--total-cents', type=int, required=True)
@click.option('--paid-cents', type=int, default=0, show_default=True)
@click.option('--invoice-date', default=None, help='YYYY-MM-DD (default today)')
@click.option('--due-date', default=None, help='YYYY-MM-DD (optional)')
@with_appcontext
def record_credit_cli(customer_id, invoice_no, total_cents, paid_cents, invoice_date, due_date):
    """Record an invoice sold on credit (creates its debt record)."""
    try:
        sale = debt_service.record_credit_sale(
            customer_id=customer_id,
            invoice_no=invoice_no,
            total_amount_cents=total_cents,
            invoice_date=invoice_date,
            due_date=due_date,
            paid_amount_cents=paid_cents,
        )
    except ReceivablesError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"PASS Recorded {sale.invoice_no} (ID: {sale.id}) "
        f"total={sale.total_amount_cents} remaining={sale.remaining_amount_cents} status={sale.payment_status}"
    )


# =============================================================================
# REGISTERS / MONEY BOXES
# =============================================================================

@click.group('registers')
def registers_group():
    """Register session commands."""


@registers_group.command('open')
@click.option('--user-id', type=int, required=True)
@click.option('--opening-cents', type=int, default=0, show_default=True)
@with_appcontext
def open_register_cli(user_id, opening_cents):
    try:
        session = register_service.open_register(user_id, opening_cents)
    except ReceivablesError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Opened register session {session.id} for user {user_id} with {session.current_cash_cents} cents")


@registers_group.command('close')
@click.option('--user-id', type=int, required=True)
@click.option('--closing-cents', type=int, required=True)
@with_appcontext
def close_register_cli(user_id, closing_cents):
    try:
        session = register_service.close_register(user_id, closing_cents)
    except ReceivablesError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Closed register session {session.id}; variance {session.variance_cents} cents")


@click.group('money-boxes')
def money_boxes_group():
    """Money box commands."""


@money_boxes_group.command('create')
@click.option('--name', required=True)
@click.option('--user-id', type=int, required=True, help='Creating user')
@click.option('--initial-cents', type=int, default=0, show_default=True)
@with_appcontext
def create_money_box_cli(name, user_id, initial_cents):
    try:
        box = money_box_service.create_money_box(name, user_id, initial_cents)
    except ReceivablesError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created money box {box.name} (ID: {box.id}) balance={box.balance_cents}")


@money_boxes_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive boxes')
@with_appcontext
def list_money_boxes_cli(include_inactive):
    boxes = money_box_service.list_money_boxes(include_inactive=include_inactive)
    if not boxes:
        click.echo("No money boxes.")
        return
    for box in boxes:
        status = "active" if box.is_active else "inactive"
        click.echo(f"{box.id:>4}  {box.name:<24} {box.balance_cents:>12}  {status}")


# =============================================================================
# CACHE
# =============================================================================

@click.group('cache')
def cache_group():
    """Stats cache inspection."""


@cache_group.command('stats')
@with_appcontext
def cache_stats_cli():
    stats = get_cache_coordinator().cache.stats()
    for key in sorted(stats):
        click.echo(f"{key}: {stats[key]}")


@cache_group.command('clear')
@with_appcontext
def cache_clear_cli():
    count = get_cache_coordinator().cache.clear()
    click.echo(f"PASS Cleared {count} cache keys")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(sales_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(money_boxes_group)
    app.cli.add_command(cache_group)
