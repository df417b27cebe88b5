# Overview: Flask CLI command groups for bootstrap, issuance, inspection, and maintenance.

# backend/passvault/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use "flask db upgrade" for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Pickup locations:
# - python -m flask locations create --slug downtown --name "Downtown" --full-name "Downtown Warehouse"
# - python -m flask locations list [--all]
# - python -m flask locations set-pin 1 --role staff --pin 1234
# - python -m flask locations set-active 1 --inactive
#
# Certificates:
# - python -m flask certificates issue --owner-id u-123 --final-price-cents 6000 --retail-value-cents 10000 [--location-id 1] [--workflow DIRECT]
# - python -m flask certificates show VLT-20240101-AB123
# - python -m flask certificates list [--status CANCELLED] [--location-id 1]
# - python -m flask certificates customer-token u-123
#   Open an owner-scoped session (hand-off from the customer sign-in service).
#
# Maintenance (cron-friendly):
# - python -m flask maintenance expire-certificates
#   Run the auto-expiry sweep; prints how many passes were cancelled.
# - python -m flask maintenance cleanup-sessions
#   Delete expired and revoked sessions.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import PassVaultError
from .services import (
    audit_service,
    auth_service,
    certificate_store,
    expiry_service,
    location_service,
    session_service,
)
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Database tables ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, audit history included!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('locations')
def locations_group():
    """Pickup location management."""


@locations_group.command('create')
@click.option('--slug', required=True, help='Short unique key, e.g. downtown')
@click.option('--name', required=True)
@click.option('--full-name', default=None)
@click.option('--address', default=None)
@click.option('--city', default=None)
@click.option('--state', default=None)
@click.option('--zip', 'zip_code', default=None)
@click.option('--phone', default=None)
@click.option('--sort-order', type=int, default=0, show_default=True)
@with_appcontext
def create_location_cli(slug, name, full_name, address, city, state, zip_code, phone, sort_order):
    """Create a pickup location."""
    try:
        location = location_service.create_location(
            slug=slug,
            name=name,
            full_name=full_name,
            address=address,
            city=city,
            state=state,
            zip=zip_code,
            phone=phone,
            sort_order=sort_order,
        )
    except PassVaultError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created location {location.display_name} (ID: {location.id}, slug: {location.slug})")


@locations_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive locations')
@with_appcontext
def list_locations_cli(include_inactive):
    """List pickup locations."""
    locations = location_service.list_locations(include_inactive=include_inactive)

    if not locations:
        click.echo("No locations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Slug':<16} {'Name':<30} {'Active':<8} {'Staff PIN':<10} {'Admin PIN'}")
    click.echo("="*80)

    for location in locations:
        active_str = "Yes" if location.active else "No"
        staff_pin = "set" if location.staff_pin_hash else "-"
        admin_pin = "set" if location.admin_pin_hash else "-"
        click.echo(
            f"{location.id:<5} {location.slug:<16} {location.display_name[:30]:<30} {active_str:<8} {staff_pin:<10} {admin_pin}"
        )

    click.echo("="*80 + "\n")


@locations_group.command('set-pin')
@click.argument('location_id', type=int)
@click.option('--role', type=click.Choice(['staff', 'admin']), default='staff', show_default=True)
@click.option('--pin', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def set_pin_cli(location_id, role, pin):
    """Set the staff or admin PIN of a location (4 digits)."""
    try:
        location = auth_service.set_pin(location_id, role, pin)
    except PassVaultError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS {role.capitalize()} PIN set for {location.display_name}")


@locations_group.command('set-active')
@click.argument('location_id', type=int)
@click.option('--active/--inactive', default=True)
@with_appcontext
def set_active_cli(location_id, active):
    """Show or hide a location from customers."""
    try:
        location = location_service.set_active(location_id, active)
    except PassVaultError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS {location.display_name} is now {'active' if location.active else 'inactive'}")


@click.group('certificates')
def certificates_group():
    """Certificate issuance and inspection."""


@certificates_group.command('issue')
@click.option('--owner-id', required=True)
@click.option('--final-price-cents', type=int, required=True)
@click.option('--retail-value-cents', type=int, required=True)
@click.option('--original-price-cents', type=int, default=None)
@click.option('--auction-id', default=None)
@click.option('--location-id', 'claim_location_id', type=int, default=None, help='Claim location, if already chosen')
@click.option('--expires-at', default=None, help='ISO-8601; defaults to CERTIFICATE_VALIDITY_DAYS from now')
@click.option('--workflow', type=click.Choice(['PREP', 'DIRECT'], case_sensitive=False), default=None)
@with_appcontext
def issue_certificate_cli(owner_id, final_price_cents, retail_value_cents, original_price_cents,
                          auction_id, claim_location_id, expires_at, workflow):
    """Issue a pass for a concluded auction."""
    try:
        cert = certificate_store.issue_certificate(
            owner_id=owner_id,
            final_price_cents=final_price_cents,
            retail_value_cents=retail_value_cents,
            original_price_cents=original_price_cents,
            auction_id=auction_id,
            expires_at=parse_iso_datetime(expires_at),
            claim_location_id=claim_location_id,
            workflow=workflow,
        )
    except (PassVaultError, ValueError) as e:
        raise click.ClickException(getattr(e, "message", str(e)))
    click.echo(f"PASS Issued {cert.certificate_number} (ID: {cert.id}, status: {cert.status}, expires: {cert.expires_at:%Y-%m-%d %H:%M} UTC)")


@certificates_group.command('show')
@click.argument('certificate_number')
@with_appcontext
def show_certificate_cli(certificate_number):
    """Show a pass and its audit history."""
    cert = certificate_store.find_by_number(certificate_number)
    if not cert:
        raise click.ClickException(f"No pass found with number {certificate_number.upper()}")

    click.echo(f"\n{cert.certificate_number}  [{cert.status}]  workflow={cert.workflow}")
    click.echo(f"  owner: {cert.owner_id}   claim location: {cert.claim_location.display_name if cert.claim_location else '-'}")
    click.echo(f"  final: {cert.final_price_cents}c   retail: {cert.retail_value_cents}c   discount: {cert.discount_cents}c")
    click.echo(f"  expires: {cert.expires_at}   voided: {'yes (' + (cert.voided_reason or '') + ')' if cert.voided else 'no'}")
    if cert.redeemed_at:
        click.echo(f"  redeemed: {cert.redeemed_at} at {cert.redeemed_location} (pos {cert.pos_transaction_id})")

    click.echo("\n  History:")
    for entry in audit_service.get_certificate_history(cert.id):
        who = entry.performed_by or "system"
        click.echo(f"  - {entry.performed_at}  {entry.action:<24} {who}")
    click.echo("")


@certificates_group.command('list')
@click.option('--status', default=None)
@click.option('--location-id', type=int, default=None)
@click.option('--owner-id', default=None)
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_certificates_cli(status, location_id, owner_id, limit):
    """List recent passes."""
    certs = certificate_store.list_certificates(
        status=status,
        claim_location_id=location_id,
        owner_id=owner_id,
        limit=limit,
    )

    if not certs:
        click.echo("No certificates found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Number':<22} {'Status':<11} {'Location':<10} {'Owner':<16} {'Expires'}")
    click.echo("="*80)
    for cert in certs:
        click.echo(
            f"{cert.id:<6} {cert.certificate_number:<22} {cert.status:<11} "
            f"{cert.claim_location_id or '-'!s:<10} {cert.owner_id[:16]:<16} {cert.expires_at:%Y-%m-%d}"
        )
    click.echo("="*80 + "\n")


@certificates_group.command('customer-token')
@click.argument('owner_id')
@with_appcontext
def customer_token_cli(owner_id):
    """Open an owner-scoped session and print its bearer token."""
    try:
        session, token = session_service.create_customer_session(owner_id)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Session {session.id} for {owner_id}, expires {session.expires_at:%Y-%m-%d %H:%M} UTC")
    click.echo(token)


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('expire-certificates')
@with_appcontext
def expire_certificates_cli():
    """
    Run the auto-expiry sweep.

    Safe to run from cron at any interval; reruns cancel nothing new.
    """
    try:
        cancelled = expiry_service.run_auto_expiry_sweep()
    except PassVaultError as e:
        raise click.ClickException(e.message)
    click.echo(f"Cancelled {cancelled} expired certificate(s).")


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired and revoked sessions."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} session(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(locations_group)
    app.cli.add_command(certificates_group)
    app.cli.add_command(maintenance_group)
