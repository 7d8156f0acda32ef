# Overview: Flask CLI command groups for bootstrap, user management and finance maintenance.

# backend/erp/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, the default store unit and the admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username jane --email jane@erp.local --password "Password123" --role user
# - python -m flask users deactivate jane
#   Deactivate a user and revoke every open session.
#
# Finance:
# - python -m flask finance mark-overdue
#   Flag PENDING payables/receivables past their due date as OVERDUE.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import StoreUnit, User
from .models.auth import ROLE_ADMIN, ROLES
from .models.units import UNIT_TYPE_STORE
from .services import finance_service, session_service
from .services.auth_service import PasswordValidationError, UserExistsError, create_user
from .services.concurrency import run_with_retry


DEFAULT_ADMIN_PASSWORD = "Password123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-username', default='admin', help='Username of the bootstrap admin')
@click.option('--admin-email', default='admin@erp.local', help='Email of the bootstrap admin')
@with_appcontext
def init_system(admin_username, admin_email):
    """
    Initialize the ERP: schema, default store unit, admin user.

    The admin password defaults to "Password123". Change it in production.
    """
    click.echo("START Initializing ERP...")

    db.create_all()
    click.echo("PASS Schema ready")

    unit = db.session.query(StoreUnit).filter_by(is_default=True).first()
    if not unit:
        unit = StoreUnit(code="MAIN", name="Main Store", type=UNIT_TYPE_STORE, is_active=True, is_default=True)
        db.session.add(unit)
        db.session.commit()
        click.echo(f"PASS Created default unit: {unit.name} (ID: {unit.id})")
    else:
        click.echo(f"PASS Using existing default unit: {unit.name} (ID: {unit.id})")

    existing = db.session.query(User).filter_by(username=admin_username).first()
    if existing:
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")
    else:
        try:
            create_user(admin_username, DEFAULT_ADMIN_PASSWORD, email=admin_email, name="Administrator", role=ROLE_ADMIN)
            click.echo(f"PASS Created admin user: {admin_username} / {DEFAULT_ADMIN_PASSWORD}")
        except (PasswordValidationError, UserExistsError) as e:
            click.echo(f"FAIL Failed to create admin user: {e}")

    click.echo("DONE ERP initialized")


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
    """User inspection and management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, email, password, role):
    """
    Create a new user.

    Password must be 8+ characters with at least one letter and one digit.
    """
    try:
        user = create_user(username, password, email=email, role=role)
        click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
    except (UserExistsError, ValueError) as e:
        click.echo(f"FAIL Failed to create user: {e}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their role and active status."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<8} {'Active'}")
    click.echo("=" * 80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {(user.email or '-'):<30} {user.role:<8} {active_str}")
    click.echo("=" * 80 + "\n")


@users_group.command('deactivate')
@click.argument('username')
@with_appcontext
def deactivate_user(username):
    """Deactivate a user and revoke their sessions."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return
    user.is_active = False
    db.session.commit()
    revoked = session_service.revoke_all_user_sessions(user.id, reason="User deactivated")
    click.echo(f"PASS Deactivated '{username}' ({revoked} sessions revoked)")


@click.group('finance')
def finance_group():
    """Finance maintenance commands."""


@finance_group.command('mark-overdue')
@with_appcontext
def mark_overdue_cli():
    """Flag PENDING accounts past their due date as OVERDUE."""
    def _sweep():
        result = finance_service.mark_overdue()
        db.session.commit()
        return result

    counts = run_with_retry(_sweep)
    click.echo(f"PASS Marked {counts['payables']} payables and {counts['receivables']} receivables overdue")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(finance_group)
