# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/ricemart/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role staff]
#   List users with role and active status.
# - python -m flask users create --name "Asha" --email asha@ricemart.local --role admin
#   Create a user record (credentials live with the upstream auth layer).
#
# Inventory:
# - python -m flask inventory run-forecasting
#   Recompute the demand forecast for every ledger entry.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.users import VALID_ROLES


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database initialized.")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@click.option('--role', type=click.Choice(VALID_ROLES), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<32} {'Role':<10} {'Active'}")
    click.echo("="*80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<32} {user.role:<10} {active_str}")
    click.echo("="*80 + "\n")


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(VALID_ROLES), default='customer', show_default=True)
@click.option('--phone', default=None, help='Phone number')
@with_appcontext
def create_user(name, email, role, phone):
    """Create a user record."""
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL A user with email {email} already exists.")
        raise SystemExit(1)

    user = User(name=name, email=email, role=role, phone=phone, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created {role} {name} (id={user.id})")


@click.group('inventory')
def inventory_group():
    """Stock ledger maintenance."""


@inventory_group.command('run-forecasting')
@with_appcontext
def run_forecasting():
    """Forecast demand for every ledger entry; entries without history are skipped."""
    from .container import get_services

    summary = get_services().stock.run_forecasting()
    click.echo(
        f"PASS Processed {summary['processed']} entries: "
        f"{summary['updated']} updated, {summary['skipped']} skipped, {summary['failed']} failed."
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
