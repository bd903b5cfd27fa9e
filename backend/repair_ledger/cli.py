# Overview: Flask CLI command groups for bootstrap, subscriptions, and ledger maintenance.

# backend/repair_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to repair_ledger (PowerShell: $env:FLASK_APP="repair_ledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (development; use `flask db upgrade` in production).
#
# Workshop management (MULTI-TENANT):
# - python -m flask workshops list
#   List all workshops with subscription status.
# - python -m flask workshops create --name "Atelier Centre" --code "CENTRE" --months 12
#   Create a workshop (tenant) with an initial paid subscription.
# - python -m flask workshops issue-token --workshop-id 1 --label "Front desk"
#   Issue an API token for a workshop (printed once, stored hashed).
#
# Subscriptions:
# - python -m flask subscriptions extend --workshop-id 1 --months 3
# - python -m flask subscriptions stop --workshop-id 1
# - python -m flask subscriptions reactivate --workshop-id 1
# - python -m flask subscriptions expire
#   Mark lapsed subscriptions as unpaid.
#
# Ledger maintenance:
# - python -m flask ledger verify --workshop-id 1
#   Report tickets whose paid total disagrees with their payments.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Workshop
from .services import subscription_service, token_service
from .services.errors import LedgerError
from .services.ledger_service import verify_workshop
from .services.subscription_service import SubscriptionError
from .time_utils import utctoday


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (idempotent)."""
    db.create_all()
    click.echo("PASS Database tables created")


# =============================================================================
# WORKSHOP MANAGEMENT COMMANDS
# =============================================================================

@click.group('workshops')
def workshops_group():
    """Workshop (tenant) management commands."""


@workshops_group.command('list')
@with_appcontext
def list_workshops():
    """List all workshops."""
    workshops = db.session.query(Workshop).order_by(Workshop.id).all()

    if not workshops:
        click.echo("No workshops found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Subscription'}")
    click.echo("="*80)

    for workshop in workshops:
        active_str = "Yes" if workshop.is_active else "No"
        subscription = subscription_service.get_current_subscription(workshop.id)
        if subscription is None:
            sub_str = "none"
        else:
            state = "active" if subscription_service.is_subscription_active(workshop.id) else "inactive"
            sub_str = f"{state} until {subscription.end_date.isoformat()}"

        click.echo(f"{workshop.id:<5} {workshop.name:<30} {workshop.code or '-':<15} {active_str:<8} {sub_str}")

    click.echo("="*80 + "\n")


@workshops_group.command('create')
@click.option('--name', required=True, help='Workshop name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--months', type=int, default=1, show_default=True, help='Initial subscription length')
@click.option('--price', default='0', show_default=True, help='Subscription price per month')
@with_appcontext
def create_workshop_cli(name, code, months, price):
    """Create a new workshop (tenant) with a subscription starting today."""
    existing = db.session.query(Workshop).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Workshop with code '{code}' already exists")
        return

    workshop = Workshop(name=name, code=code, is_active=True)
    db.session.add(workshop)
    db.session.commit()

    try:
        subscription = subscription_service.create_subscription(
            workshop.id, start_date=utctoday(), months=months, price_per_month=price
        )
    except (SubscriptionError, LedgerError) as exc:
        click.echo(f"FAIL Workshop created (ID: {workshop.id}) but subscription failed: {exc}")
        return

    click.echo(
        f"PASS Created workshop: {workshop.name} (ID: {workshop.id}, Code: {workshop.code}), "
        f"subscribed until {subscription.end_date.isoformat()}"
    )


@workshops_group.command('issue-token')
@click.option('--workshop-id', type=int, required=True, help='Workshop ID')
@click.option('--label', help='Where the token is used (e.g., terminal name)')
@with_appcontext
def issue_token_cli(workshop_id, label):
    """Issue an API token. The plaintext is shown only once."""
    try:
        record, token = token_service.issue_token(workshop_id, label=label)
    except ValueError as exc:
        click.echo(f"FAIL {exc}")
        return

    click.echo(f"PASS Token {record.id} issued for workshop {workshop_id}")
    click.echo(f"   {token}")


# =============================================================================
# SUBSCRIPTION COMMANDS
# =============================================================================

@click.group('subscriptions')
def subscriptions_group():
    """Workshop subscription maintenance."""


@subscriptions_group.command('extend')
@click.option('--workshop-id', type=int, required=True, help='Workshop ID')
@click.option('--months', type=int, required=True, help='Months to add')
@with_appcontext
def extend_subscription_cli(workshop_id, months):
    """Extend the current subscription and mark it paid."""
    try:
        subscription = subscription_service.extend_subscription(workshop_id, months)
    except (SubscriptionError, LedgerError) as exc:
        click.echo(f"FAIL {exc}")
        return
    click.echo(f"PASS Subscription extended until {subscription.end_date.isoformat()}")


@subscriptions_group.command('stop')
@click.option('--workshop-id', type=int, required=True, help='Workshop ID')
@with_appcontext
def stop_subscription_cli(workshop_id):
    """Stop the current subscription (ledger calls are refused)."""
    try:
        subscription_service.stop_subscription(workshop_id)
    except LedgerError as exc:
        click.echo(f"FAIL {exc}")
        return
    click.echo(f"PASS Subscription stopped for workshop {workshop_id}")


@subscriptions_group.command('reactivate')
@click.option('--workshop-id', type=int, required=True, help='Workshop ID')
@with_appcontext
def reactivate_subscription_cli(workshop_id):
    """Reactivate the current subscription."""
    try:
        subscription_service.reactivate_subscription(workshop_id)
    except LedgerError as exc:
        click.echo(f"FAIL {exc}")
        return
    click.echo(f"PASS Subscription reactivated for workshop {workshop_id}")


@subscriptions_group.command('expire')
@with_appcontext
def expire_subscriptions_cli():
    """Mark lapsed subscriptions as unpaid."""
    count = subscription_service.expire_lapsed_subscriptions()
    click.echo(f"PASS Expired {count} subscription(s)")


# =============================================================================
# LEDGER COMMANDS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--workshop-id', type=int, help='Workshop ID (all workshops if omitted)')
@with_appcontext
def verify_ledger_cli(workshop_id):
    """Report tickets whose paid total disagrees with their payments."""
    if workshop_id is not None:
        workshop_ids = [workshop_id]
    else:
        workshop_ids = [w.id for w in db.session.query(Workshop.id).order_by(Workshop.id).all()]

    failures = 0
    for wid in workshop_ids:
        for report in verify_workshop(wid):
            failures += 1
            click.echo(f"FAIL workshop {wid} ticket {report['lookup_code']} (ID: {report['ticket_id']})")
            for issue in report["issues"]:
                click.echo(f"   - {issue}")

    if failures:
        raise SystemExit(1)
    click.echo(f"PASS Ledger consistent for {len(workshop_ids)} workshop(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(workshops_group)
    app.cli.add_command(subscriptions_group)
    app.cli.add_command(ledger_group)
