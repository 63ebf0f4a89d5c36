# Overview: Flask CLI command groups for bootstrap and stock ledger inspection.

# backend/stockbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="stockbook"; bash: export FLASK_APP=stockbook).
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock ledger:
# - python -m flask stock verify [--product-id ID]
#   Fold every product's movement history and compare with its stock_qty.
#   Exits with status 1 when any product is inconsistent.
# - python -m flask stock history PRODUCT_ID [--limit 20]
#   Print a product's movements, newest first.
#
# Identity (local development):
# - python -m flask auth dev-token USER_ID [--email you@example.com]
#   Mint a token signed with AUTH_JWT_SECRET, as the hosted provider would.

import sys

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import StockbookError
from .extensions import db
from .models import Product
from .services import providers
from .services.identity_service import issue_access_token


@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm dropping all data')
@with_appcontext
def reset_db(yes):
    """Drop and recreate all tables."""
    if not yes:
        click.echo("Refusing to reset without --yes.")
        sys.exit(1)
    db.drop_all()
    db.create_all()
    click.echo("Database reset.")


@click.group('stock')
def stock_group():
    """Stock ledger inspection."""


@stock_group.command('verify')
@click.option('--product-id', default=None, help='Only check this product')
@with_appcontext
def verify_stock(product_id):
    """Check that stock_qty equals the fold of each product's movements."""
    ledger = providers.stock_ledger()
    if product_id:
        product_ids = [product_id]
    else:
        product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.created_at.asc())]

    bad = 0
    for pid in product_ids:
        try:
            report = ledger.verify(pid)
        except StockbookError as exc:
            click.echo(f"{pid}: {exc.message}")
            bad += 1
            continue
        if report["consistent"]:
            click.echo(
                f"OK   {report['sku']}: {report['movement_count']} movement(s), stock {report['stock_qty']}"
            )
            continue
        bad += 1
        click.echo(
            f"FAIL {report['sku']}: stock_qty {report['stock_qty']} but ledger folds to {report['folded_qty']}"
        )
        for link in report["broken_links"]:
            click.echo(f"     seq {link['sequence']}: {link['problem']}")

    click.echo(f"{len(product_ids)} product(s) checked, {bad} inconsistent.")
    if bad:
        sys.exit(1)


@stock_group.command('history')
@click.argument('product_id')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def stock_history(product_id, limit):
    """Print a product's movements, newest first."""
    try:
        movements = providers.stock_ledger().get_history(product_id, limit=limit)
    except StockbookError as exc:
        click.echo(exc.message)
        sys.exit(1)
    if not movements:
        click.echo("No movements recorded.")
        return
    for m in movements:
        click.echo(
            f"#{m.sequence:<5} {m.created_at:%Y-%m-%d %H:%M:%S}  {m.kind:<14} "
            f"{m.quantity:+6d}  {m.quantity_before:>6} -> {m.quantity_after:<6} {m.note or ''}"
        )


@click.group('auth')
def auth_group():
    """Identity helpers for local development."""


@auth_group.command('dev-token')
@click.argument('user_id')
@click.option('--email', default=None)
@with_appcontext
def dev_token(user_id, email):
    """Mint a development access token."""
    secret = current_app.config.get("AUTH_JWT_SECRET")
    if not secret:
        click.echo("AUTH_JWT_SECRET is not set.")
        sys.exit(1)
    click.echo(issue_access_token(
        user_id,
        secret=secret,
        audience=current_app.config.get("AUTH_JWT_AUDIENCE") or None,
        email=email,
    ))


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(auth_group)
