# Overview: Flask CLI command groups for bootstrap and user inspection.

# backend/liquorpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to liquorpos (PowerShell: $env:FLASK_APP="liquorpos").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and a default administrator.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --email till@store.local --password "Password123!" --role sales
#   Create a user (prompts if options are omitted).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLES, ROLE_ADMINISTRATOR, ROLE_SALES
from .services.auth_service import create_user, PasswordValidationError
from .validation import ConflictError


DEFAULT_ADMIN_EMAIL = "admin@liquorpos.local"
DEFAULT_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create all tables and a default administrator.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing system...")
    db.create_all()
    click.echo("PASS Tables created")

    existing = db.session.query(User).filter_by(role=ROLE_ADMINISTRATOR).first()
    if existing:
        click.echo(f"WARN  Administrator '{existing.email}' already exists, skipping...")
        return

    user = create_user(
        email=DEFAULT_ADMIN_EMAIL,
        password=DEFAULT_PASSWORD,
        name="Store",
        surname="Admin",
        role=ROLE_ADMINISTRATOR,
    )
    click.echo(f"PASS Created administrator: {user.email} / {DEFAULT_PASSWORD}")
    click.echo("SECURITY Change this password immediately in production!")


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
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.email:<32} {user.role:<14} {status}  {user.display_name}")


@users_group.command('create')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--name', default=None)
@click.option('--surname', default=None)
@click.option('--role', type=click.Choice(ROLES), default=ROLE_SALES, show_default=True)
@with_appcontext
def create_user_command(email, password, name, surname, role):
    try:
        user = create_user(email=email, password=password, name=name, surname=surname, role=role)
    except (PasswordValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created user: {user.email} with role '{user.role}' (ID: {user.id})")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
