# Overview: Flask CLI command groups for bootstrap, stock and analytics maintenance.

# backend/dukaan_pos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Bootstrap:
# - python -m flask pos init-db
#   Create all tables (idempotent).
# - python -m flask pos reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask pos seed
#   Demo products with opening stock.
#
# Catalog / stock:
# - python -m flask catalog add --sku A --name "Milk 1L" --price 10.00 --tax-rate 5%
# - python -m flask inventory restock A 20 --note "Delivery 14"
# - python -m flask inventory verify A
#
# Analytics:
# - python -m flask analytics drain      Re-deliver pending invoice events.
# - python -m flask analytics rebuild    Replay the event log into fresh rollups.
# - python -m flask analytics verify     Compare rollups against a replay.
#
# Maintenance:
# - python -m flask reservations expire
#   Release stale holds and abandon idle carts.

import click
from flask.cli import with_appcontext

from .errors import PosError
from .extensions import db
from .money import format_cents, parse_money, parse_tax_rate
from .services.core import get_core

DEMO_PRODUCTS = [
    # sku, name, price, tax rate, opening stock
    ("A", "Milk 1L", "10.00", "5%", 50),
    ("B", "Bread", "20.00", "0%", 30),
    ("C", "Eggs (12)", "4.50", "5%", 40),
    ("D", "Tea 250g", "3.99", "12%", 25),
]


def _fail(exc: PosError):
    click.echo(f"FAIL {exc.message}")
    if exc.details:
        click.echo(f"     {exc.details}")
    raise SystemExit(1)


@click.group('pos')
def pos_group():
    """Database bootstrap commands."""


@pos_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created")


@pos_group.command('reset-db')
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
    click.echo("PASS Database reset complete. Restart the server before serving traffic.")


@pos_group.command('seed')
@with_appcontext
def seed():
    """Add demo products; opening stock only for products that have none."""
    core = get_core()
    created = 0
    for sku, name, price, rate, opening in DEMO_PRODUCTS:
        core.catalog.upsert_product(
            sku=sku,
            name=name,
            unit_price_cents=parse_money(price),
            tax_rate_bps=parse_tax_rate(rate),
        )
        if core.ledger.quantity_on_hand(sku) == 0:
            core.ledger.restock(sku, opening, note="Opening stock")
            created += 1
        click.echo(f"  {sku:<6} {name:<12} {price:>8}  on hand {core.ledger.quantity_on_hand(sku)}")
    click.echo("")
    click.echo(f"Seed completed. Opening stock posted for {created} product(s).")


@click.group('catalog')
def catalog_group():
    """Product catalog commands."""


@catalog_group.command('add')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price', required=True, help='Unit price, e.g. 10.00')
@click.option('--tax-rate', default='0', show_default=True, help='Fraction (0.05) or percent (5%)')
@click.option('--inactive', is_flag=True, help='Hide the product from scans')
@with_appcontext
def catalog_add(sku, name, price, tax_rate, inactive):
    """Create or update a product."""
    try:
        product = get_core().catalog.upsert_product(
            sku=sku,
            name=name,
            unit_price_cents=parse_money(price),
            tax_rate_bps=parse_tax_rate(tax_rate),
            is_active=not inactive,
        )
    except PosError as exc:
        _fail(exc)
    click.echo(
        f"PASS {product.sku} {product.name} @ {format_cents(product.unit_price_cents)} "
        f"tax {product.tax_rate_bps} bps{' (inactive)' if not product.is_active else ''}"
    )


@click.group('inventory')
def inventory_group():
    """Stock ledger commands."""


@inventory_group.command('restock')
@click.argument('sku')
@click.argument('quantity', type=int)
@click.option('--note', default=None)
@with_appcontext
def inventory_restock(sku, quantity, note):
    """Append a positive restock delta."""
    core = get_core()
    try:
        core.catalog.lookup(sku)
        core.ledger.restock(sku, quantity, note=note)
    except PosError as exc:
        _fail(exc)
    stock = core.ledger.stock(sku)
    click.echo(f"PASS {sku} on hand {stock.quantity_on_hand}, available {stock.available}")


@inventory_group.command('verify')
@click.argument('skus', nargs=-1)
@with_appcontext
def inventory_verify(skus):
    """Recompute on hand from the ledger (all catalog SKUs when none given)."""
    core = get_core()
    targets = sorted(skus or core.catalog.all_skus())
    try:
        for sku in targets:
            entry = core.ledger.verify(sku)
            click.echo(f"  {sku:<12} on hand {entry.quantity_on_hand:>6}  reserved {entry.reserved:>4}")
    except PosError as exc:
        _fail(exc)
    click.echo(f"PASS {len(targets)} SKU(s) consistent")


@click.group('analytics')
def analytics_group():
    """Rollup maintenance commands."""


@analytics_group.command('drain')
@with_appcontext
def analytics_drain():
    """Re-deliver invoice events that were committed but not yet ingested."""
    delivered = get_core().bus.drain_pending()
    click.echo(f"Delivered {delivered} pending event(s).")


@analytics_group.command('rebuild')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def analytics_rebuild(yes):
    """Replace every rollup bucket with a replay of the event log."""
    if not yes:
        click.confirm("WARN Stop the server before rebuilding. Continue?", abort=True)
    buckets = get_core().aggregator.rebuild()
    click.echo(f"PASS Rebuilt {buckets} bucket(s)")


@analytics_group.command('verify')
@with_appcontext
def analytics_verify():
    """Fail when live or persisted rollups differ from a replay of the log."""
    try:
        buckets = get_core().aggregator.verify()
    except PosError as exc:
        _fail(exc)
    click.echo(f"PASS {buckets} bucket(s) match the event log")


@click.group('reservations')
def reservations_group():
    """Stock hold maintenance."""


@reservations_group.command('expire')
@with_appcontext
def reservations_expire():
    core = get_core()
    carts = core.engine.expire_idle_carts()
    released = core.ledger.expire_stale()
    click.echo(f"Abandoned {len(carts)} idle cart(s), released {len(released)} stale hold(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(pos_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(analytics_group)
    app.cli.add_command(reservations_group)
