# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/quoteflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates roles and the default admin/staff/buyer users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username acme --email buyer@acme.test --password "Password123!" --role buyer --company "Acme Ltd"
# - python -m flask users deactivate --username acme
#
# Catalog:
# - python -m flask catalog add --sku MRB-001 --name "Carrara Marble" --price-cents 12500 --unit sqm --stock 40
# - python -m flask catalog restock --sku MRB-001 --quantity 10
# - python -m flask catalog list
#
# Maintenance (schedule these):
# - python -m flask maintenance expire-quotations
# - python -m flask maintenance cleanup-challenges --retention-days 30
# - python -m flask maintenance cleanup-security-events --retention-days 90

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import CatalogItem, User
from .permissions import DEFAULT_ROLES
from .services.auth_service import create_user, create_default_roles, PasswordValidationError
from .services import catalog_service, inventory_service, maintenance_service, permission_service, session_service
from .services.catalog_service import CatalogError


DEFAULT_USERS = [
    ("admin", "admin@quoteflow.local", "admin", None),
    ("staff", "staff@quoteflow.local", "staff", None),
    ("buyer", "buyer@quoteflow.local", "buyer", "Demo Buyer Ltd"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--password', default='Password123!', show_default=True, help='Password for created default users')
@with_appcontext
def init_system(password):
    """
    Initialize roles and default users (admin, staff, buyer).

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing quoteflow...")

    create_default_roles()
    click.echo(f"PASS Roles ready: {', '.join(name for name, _ in DEFAULT_ROLES)}")

    for username, email, role, company in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"SKIP User '{username}' already exists")
            continue
        try:
            create_user(username, email, password, company_name=company, roles=[role])
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed: {str(e)}")
            return
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")

    click.echo("DONE System initialized.")


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


@click.group('users')
def users_group():
    """User inspection and creation."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([name for name, _ in DEFAULT_ROLES]), prompt=True, help='Role')
@click.option('--company', default=None, help='Company name (buyers)')
@with_appcontext
def create_user_cli(username, email, password, role, company):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    create_default_roles()
    try:
        create_user(username, email, password, company_name=company, roles=[role])
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        return

    click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("="*100)

    for user in users:
        roles_str = ", ".join(permission_service.get_user_roles(user.id)) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {roles_str}")

    click.echo("="*100 + "\n")


@users_group.command('deactivate')
@click.option('--username', required=True)
@with_appcontext
def deactivate_user_cli(username):
    """Deactivate a user and revoke every open session."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    user.is_active = False
    db.session.commit()
    revoked = session_service.revoke_all_user_sessions(user.id, reason="User deactivated")
    click.echo(f"PASS Deactivated {username}; revoked {revoked} sessions")


@click.group('catalog')
def catalog_group():
    """Catalog items and stock."""


@catalog_group.command('add')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--unit', 'price_unit', default='unit', show_default=True)
@click.option('--stock', type=int, default=0, show_default=True)
@with_appcontext
def add_item_cli(sku, name, price_cents, price_unit, stock):
    """Add a catalog item."""
    try:
        item = catalog_service.create_item(
            sku=sku, name=name, price_cents=price_cents, price_unit=price_unit, stock_quantity=stock,
        )
    except CatalogError as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS Created catalog item {item.sku} (ID: {item.id})")


@catalog_group.command('restock')
@click.option('--sku', required=True)
@click.option('--quantity', type=int, required=True)
@with_appcontext
def restock_item_cli(sku, quantity):
    """Add received stock to an item."""
    item = db.session.query(CatalogItem).filter_by(sku=sku).first()
    if not item:
        click.echo(f"FAIL SKU {sku} not found")
        return
    try:
        item = catalog_service.restock(item.id, quantity)
    except CatalogError as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS {item.sku} stock is now {item.stock_quantity}")


@catalog_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive items')
@with_appcontext
def list_items_cli(include_inactive):
    """List catalog items with availability."""
    items = catalog_service.list_items(include_inactive=include_inactive)
    if not items:
        click.echo("No catalog items found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'SKU':<15} {'Name':<30} {'Price':<12} {'Stock':<8} {'Available'}")
    click.echo("="*90)
    for item in items:
        price = f"{item.price_cents / 100:.2f}/{item.price_unit}"
        click.echo(
            f"{item.id:<5} {item.sku:<15} {item.name[:29]:<30} {price:<12} "
            f"{item.stock_quantity:<8} {inventory_service.available(item.id)}"
        )
    click.echo("="*90 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('expire-quotations')
@with_appcontext
def expire_quotations_cli():
    """Mark quotations past their validity window as expired."""
    expired = maintenance_service.expire_quotations()
    click.echo(f"Expired {expired} quotations.")


@maintenance_group.command('cleanup-challenges')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_challenges_cli(retention_days):
    """Expire abandoned step-up sessions and delete old closed ones."""
    result = maintenance_service.cleanup_stepup_challenges(retention_days=retention_days)
    click.echo(f"Expired {result['expired']} open challenges; deleted {result['deleted']} closed challenges.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(maintenance_group)
