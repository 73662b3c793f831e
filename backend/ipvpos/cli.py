# Overview: Flask CLI command groups for bootstrap, ledger repair, shifts and IPV reports.

# backend/ipvpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "ipvpos:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--location "Almacen"]
#   Idempotent bootstrap: creates tables, payment methods and an optional stock location.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection/repair:
# - python -m flask ledger audit
#   Compare cached WarehouseStock balances with the movement log.
# - python -m flask ledger rebuild --yes
#   Re-derive every cached balance from the movement log.
#
# Shifts:
# - python -m flask shifts close --location-id 1
#   Close the open shift at a location and write END snapshots.
# - python -m flask shifts list [--location-id 1] [--date 2026-01-31]
#   List shifts, newest first.
#
# Reports:
# - python -m flask reports ipv --location-id 1 [--date 2026-01-31] [--json]
#   Daily IPV reconciliation for a location.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import StockLocation, SNAPSHOT_END
from .services import catalog_service, ledger_service, reporting_service, shift_service
from .validation import LedgerError


def _fail(exc: LedgerError) -> None:
    click.echo(f"FAIL {exc}")
    raise SystemExit(1)


def _money(cents: int | None) -> str:
    if cents is None:
        return "-"
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--location', 'location_name', default=None, help='Create this stock location if missing')
@with_appcontext
def init_system(location_name):
    """
    Initialize the database: tables, payment methods and, optionally, a
    first stock location. Safe to run repeatedly.
    """
    click.echo("START Initializing IPV POS...")

    db.create_all()
    click.echo("PASS Tables ready")

    methods = catalog_service.ensure_payment_methods()
    click.echo(f"PASS Payment methods: {', '.join(m.name for m in methods)}")

    if location_name:
        location = db.session.query(StockLocation).filter_by(name=location_name.strip()).first()
        if location is None:
            try:
                location = catalog_service.create_stock_location(location_name)
            except LedgerError as exc:
                _fail(exc)
            click.echo(f"PASS Created stock location: {location.name} (ID: {location.id})")
        else:
            click.echo(f"PASS Using existing stock location: {location.name} (ID: {location.id})")

    click.echo("DONE Initialization complete")


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


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Stock ledger inspection and repair."""


@ledger_group.command('audit')
@with_appcontext
def audit_ledger():
    """Report balances that disagree with the movement log."""
    mismatches = ledger_service.audit_balances()
    if not mismatches:
        click.echo("PASS All balances match the movement log")
        return

    click.echo(f"{'Product':<10} {'Location':<10} {'Cached':<10} {'Ledger'}")
    for row in mismatches:
        cached = "-" if row["cached_quantity"] is None else row["cached_quantity"]
        click.echo(f"{row['product_id']:<10} {row['location_id']:<10} {cached:<10} {row['ledger_quantity']}")
    click.echo(f"FAIL {len(mismatches)} balance(s) out of sync. Run 'flask ledger rebuild --yes'.")
    raise SystemExit(1)


@ledger_group.command('rebuild')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def rebuild_ledger(yes):
    """Overwrite cached balances with the sums of the movement log."""
    if not yes:
        click.confirm("WARN This rewrites every cached stock balance. Continue?", abort=True)

    corrected = ledger_service.rebuild_balances()
    click.echo(f"PASS Rebuilt balances ({corrected} corrected)")


# =============================================================================
# SHIFTS
# =============================================================================

@click.group('shifts')
def shifts_group():
    """Shift inspection and closing."""


@shifts_group.command('close')
@click.option('--location-id', type=int, required=True, help='Stock location ID')
@with_appcontext
def close_shift_cli(location_id):
    """Close the open shift at a stock location."""
    try:
        shift = shift_service.close_shift(location_id)
    except LedgerError as exc:
        _fail(exc)
    click.echo(
        f"PASS Closed shift {shift.id} at location {location_id} "
        f"({len([s for s in shift.snapshots if s.type == SNAPSHOT_END])} END snapshots)"
    )


@shifts_group.command('list')
@click.option('--location-id', type=int, default=None, help='Filter by stock location ID')
@click.option('--date', 'day', default=None, help='Filter by day (YYYY-MM-DD)')
@with_appcontext
def list_shifts_cli(location_id, day):
    """List shifts, newest first."""
    try:
        shifts = shift_service.list_shifts(location_id=location_id, day=day)
    except LedgerError as exc:
        _fail(exc)

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<6} {'Date':<12} {'Location':<10} {'User':<20} {'Status':<8} {'Opened'}")
    click.echo("=" * 80)
    for shift in shifts:
        click.echo(
            f"{shift['id']:<6} {shift['shift_date']:<12} {shift['stock_location_id']:<10} "
            f"{(shift.get('user_name') or shift['user_id']):<20} {shift['status']:<8} {shift['opened_at']}"
        )
    click.echo("=" * 80 + "\n")


# =============================================================================
# REPORTS
# =============================================================================

@click.group('reports')
def reports_group():
    """Daily reconciliation reports."""


@reports_group.command('ipv')
@click.option('--location-id', type=int, required=True, help='Stock location ID')
@click.option('--date', 'day', default=None, help='Report day (YYYY-MM-DD), default today')
@click.option('--json', 'as_json', is_flag=True, help='Print the raw report as JSON')
@with_appcontext
def ipv_report(location_id, day, as_json):
    """IPV: initial + inbound - outflow - sold = remaining, per product."""
    try:
        report = reporting_service.build_report(location_id, day)
    except LedgerError as exc:
        _fail(exc)

    if as_json:
        click.echo(json.dumps(report, indent=2))
        return

    click.echo(f"IPV {report['location_name']} {report['date']}")
    click.echo(f"Window: {report['window_start']} -> {report['window_end']}")
    click.echo(f"Shift users: {', '.join(report['shift_users']) or '-'}")
    click.echo("=" * 104)
    click.echo(
        f"{'Product':<24} {'I':>6} {'E':>6} {'M':>6} {'V':>6} {'R':>6} {'Close':>6} "
        f"{'Revenue':>12} {'Cost':>12} {'Profit':>12}"
    )
    click.echo("=" * 104)
    for row in report["rows"]:
        closing = "-" if row["closing"] is None else row["closing"]
        click.echo(
            f"{row['name'][:24]:<24} {row['initial']:>6} {row['inbound']:>6} {row['outflow']:>6} "
            f"{row['sold']:>6} {row['remaining']:>6} {closing:>6} "
            f"{_money(row['revenue_cents']):>12} {_money(row['cost_cents']):>12} "
            f"{_money(row['profit_cents']):>12}"
        )
    click.echo("=" * 104)

    totals = report["totals"]
    click.echo(
        f"Revenue {_money(totals['revenue_cents'])}  Cost {_money(totals['cost_cents'])}  "
        f"Profit {_money(totals['profit_cents'])}"
    )
    for method, cents in totals["by_payment_method"].items():
        click.echo(f"  {method}: {_money(cents)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(reports_group)
