# Overview: Flask CLI command groups for bootstrap, master data and settings.

# backend/procure/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: demo department, one user per role, a budget for this year, one vendor.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Master data:
# - python -m flask departments create --code IT --name "Information Technology"
# - python -m flask departments list
# - python -m flask users create --username alice --email alice@corp.local --role STAFF --department IT
# - python -m flask users list
# - python -m flask vendors create --code ACME --name "Acme Supplies" --payment-terms NET30
# - python -m flask vendors list
# - python -m flask vendors set-status ACME BLACKLISTED --reason "Fraudulent invoices"
#
# Budgets:
# - python -m flask budgets create --department IT --year 2026 --total-cents 100000000
# - python -m flask budgets show --department IT [--year 2026]
#
# Workflow settings:
# - python -m flask settings list
# - python -m flask settings set auto_approval.enabled true

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Department, User, Vendor
from .models.org import VALID_ROLES, VALID_VENDOR_STATUSES, PAYMENT_TERMS
from .services import budget_service, settings_service, vendor_service
from .services.auth_service import create_user
from .time_utils import current_year
from .validation import ProcurementError


def _department_by_code(code: str) -> Department:
    department = db.session.query(Department).filter_by(code=code.upper()).first()
    if not department:
        raise click.ClickException(f"Department '{code}' not found")
    return department


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--department', 'department_code', default='GEN', help='Demo department code')
@click.option('--total-cents', default=100_000_000, type=int, help='Demo budget total (minor units)')
@with_appcontext
def init_system(department_code, total_cents):
    """
    Initialize a working system: one department, one user per role, this
    year's budget and an active vendor.

    All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing procurement system...")
    default_password = "Password123!"

    department = db.session.query(Department).filter_by(code=department_code.upper()).first()
    if not department:
        department = vendor_service.create_department(code=department_code, name="General Affairs")
        db.session.commit()
        click.echo(f"PASS Created department: {department.code} (ID: {department.id})")
    else:
        click.echo(f"PASS Using existing department: {department.code} (ID: {department.id})")

    default_users = [
        ("staff", "STAFF", department.id),
        ("manager", "MANAGER", department.id),
        ("finance", "FINANCE", None),
        ("procurement", "PROCUREMENT", None),
        ("admin", "ADMIN", None),
    ]
    for username, role, department_id in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(
                username,
                f"{username}@procure.local",
                default_password,
                role=role,
                department_id=department_id,
            )
            db.session.commit()
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except ProcurementError as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e.message}")

    year = current_year()
    if budget_service.find_budget(department.id, year) is None:
        budget_service.create_budget(department_id=department.id, year=year, total_cents=total_cents)
        db.session.commit()
        click.echo(f"PASS Created {year} budget for {department.code}: {total_cents}")
    else:
        click.echo(f"PASS Budget for {department.code} in {year} already exists")

    if not db.session.query(Vendor).first():
        vendor = vendor_service.create_vendor(code="DEMO", name="Demo Supplies")
        db.session.commit()
        click.echo(f"PASS Created vendor: {vendor.code} (ID: {vendor.id})")

    click.echo("\n" + "=" * 60)
    click.echo("DONE Procurement system initialized")
    click.echo("=" * 60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for username, role, _ in default_users:
        click.echo(f"   {username:<12} -> {username}@procure.local / {default_password}")
    click.echo("")


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


@click.group('departments')
def departments_group():
    """Department management commands."""


@departments_group.command('create')
@click.option('--code', prompt=True, help='Short unique code')
@click.option('--name', prompt=True, help='Display name')
@with_appcontext
def create_department_cli(code, name):
    try:
        department = vendor_service.create_department(code=code, name=name)
        db.session.commit()
        click.echo(f"PASS Created department: {department.code} (ID: {department.id})")
    except ProcurementError as e:
        db.session.rollback()
        raise click.ClickException(e.message)


@departments_group.command('list')
@with_appcontext
def list_departments_cli():
    departments = vendor_service.list_departments()
    if not departments:
        click.echo("No departments found.")
        return
    for department in departments:
        active = "Yes" if department.is_active else "No"
        click.echo(f"{department.id:<5} {department.code:<10} {department.name:<40} {active}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@click.option('--department', 'department_code', default=None, help='Department code (required for STAFF/MANAGER)')
@click.option('--full-name', default=None, help='Full name')
@with_appcontext
def create_user_cli(username, email, password, role, department_code, full_name):
    """
    Create a new user.

    Password must meet strength requirements:
    8+ chars, uppercase, lowercase, digit, special char.
    """
    department_id = _department_by_code(department_code).id if department_code else None
    try:
        user = create_user(
            username,
            email,
            password,
            role=role,
            department_id=department_id,
            full_name=full_name,
        )
        db.session.commit()
        click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")
    except ProcurementError as e:
        db.session.rollback()
        raise click.ClickException(e.message)


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with role and department."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<12} {'Dept':<8} {'Active'}")
    click.echo("=" * 90)
    for user in users:
        dept = user.department.code if user.department else "-"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<12} {dept:<8} {active_str}")
    click.echo("=" * 90 + "\n")


@click.group('vendors')
def vendors_group():
    """Vendor management commands."""


@vendors_group.command('create')
@click.option('--code', prompt=True, help='Short unique code')
@click.option('--name', prompt=True, help='Vendor name')
@click.option('--payment-terms', type=click.Choice(list(PAYMENT_TERMS)), default='NET30')
@click.option('--contact-email', default=None)
@with_appcontext
def create_vendor_cli(code, name, payment_terms, contact_email):
    try:
        vendor = vendor_service.create_vendor(
            code=code,
            name=name,
            payment_terms=payment_terms,
            contact_email=contact_email,
        )
        db.session.commit()
        click.echo(f"PASS Created vendor: {vendor.code} (ID: {vendor.id})")
    except ProcurementError as e:
        db.session.rollback()
        raise click.ClickException(e.message)


@vendors_group.command('list')
@click.option('--status', type=click.Choice(sorted(VALID_VENDOR_STATUSES)), default=None)
@with_appcontext
def list_vendors_cli(status):
    vendors = vendor_service.list_vendors(status=status)
    if not vendors:
        click.echo("No vendors found.")
        return
    for vendor in vendors:
        click.echo(f"{vendor.id:<5} {vendor.code:<10} {vendor.name:<40} {vendor.payment_terms:<10} {vendor.status}")


@vendors_group.command('set-status')
@click.argument('code')
@click.argument('status', type=click.Choice(sorted(VALID_VENDOR_STATUSES)))
@click.option('--reason', default=None)
@with_appcontext
def set_vendor_status_cli(code, status, reason):
    vendor = db.session.query(Vendor).filter_by(code=code.upper()).first()
    if not vendor:
        raise click.ClickException(f"Vendor '{code}' not found")
    try:
        vendor_service.set_vendor_status(vendor.id, status, reason=reason)
        db.session.commit()
        click.echo(f"PASS Vendor {vendor.code} is now {vendor.status}")
    except ProcurementError as e:
        db.session.rollback()
        raise click.ClickException(e.message)


@click.group('budgets')
def budgets_group():
    """Budget allocation commands."""


@budgets_group.command('create')
@click.option('--department', 'department_code', prompt=True, help='Department code')
@click.option('--year', type=int, default=None, help='Budget year (default: current)')
@click.option('--total-cents', type=int, prompt=True, help='Total in minor units')
@click.option('--notes', default=None)
@with_appcontext
def create_budget_cli(department_code, year, total_cents, notes):
    department = _department_by_code(department_code)
    try:
        budget = budget_service.create_budget(
            department_id=department.id,
            year=year or current_year(),
            total_cents=total_cents,
            notes=notes,
        )
        db.session.commit()
        click.echo(f"PASS Created budget {budget.id}: {department.code} {budget.year} total {budget.total_cents}")
    except ProcurementError as e:
        db.session.rollback()
        raise click.ClickException(e.message)


@budgets_group.command('show')
@click.option('--department', 'department_code', prompt=True, help='Department code')
@click.option('--year', type=int, default=None)
@with_appcontext
def show_budget_cli(department_code, year):
    department = _department_by_code(department_code)
    try:
        summary = budget_service.get_budget(department.id, year)
    except ProcurementError as e:
        raise click.ClickException(e.message)
    click.echo(f"Department: {department.code}  Year: {summary['year']}")
    for key in ("total", "used", "reserved", "available"):
        click.echo(f"  {key:<10} {summary[key]:>20}")
    click.echo(f"  {'usage %':<10} {summary['usage_percentage']:>20}")


@click.group('settings')
def settings_group():
    """Workflow settings commands."""


@settings_group.command('list')
@with_appcontext
def list_settings_cli():
    for row in settings_service.list_settings():
        click.echo(f"{row['key']:<45} {str(row['value']):<15} (default {row['default']})")


@settings_group.command('set')
@click.argument('key')
@click.argument('value')
@with_appcontext
def set_setting_cli(key, value):
    try:
        settings_service.set_value(key, value)
        db.session.commit()
        click.echo(f"PASS {key} = {settings_service.get_value(key)}")
    except ProcurementError as e:
        db.session.rollback()
        raise click.ClickException(e.message)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(departments_group)
    app.cli.add_command(users_group)
    app.cli.add_command(vendors_group)
    app.cli.add_command(budgets_group)
    app.cli.add_command(settings_group)
