#!/usr/bin/env python3
"""
Management script for the paper trading service.

Usage (via API):
    python manage.py status [--base-url http://localhost:8000]

Usage (direct DB access):
    python manage.py db init
    python manage.py db clear
    python manage.py db status
    python manage.py accounts show EMAIL
    python manage.py accounts deposit EMAIL AMOUNT
    python manage.py accounts set-cash EMAIL AMOUNT
    python manage.py alerts pending
    python manage.py monitor tick
"""

import asyncio

import click
import httpx
from sqlalchemy import func, select

from papertrade.config import load_settings
from papertrade.database import AsyncSessionLocal, init_db, reset_db
from papertrade.errors import PaperTradeError
from papertrade.events import EventBus
from papertrade.models import Account, Alert, Order, Position, User
from papertrade.money import parse_money, to_money
from papertrade.services import ledger
from papertrade.services import users as users_service
from papertrade.services.alert_monitor import AlertMonitor
from papertrade.services.quotes import FinnhubClient


DEFAULT_BASE_URL = "http://localhost:8000"


# ============================================================================
# Direct database operations (internal)
# ============================================================================


async def _count_records():
    """Count records in each table."""
    async with AsyncSessionLocal() as session:
        counts = {}
        for model, name in [
            (User, "users"),
            (Account, "accounts"),
            (Position, "positions"),
            (Order, "orders"),
            (Alert, "alerts"),
        ]:
            result = await session.execute(select(func.count()).select_from(model))
            counts[name] = result.scalar_one()
        return counts


async def _find_user(session, email: str) -> User:
    user = await users_service.get_user_by_email(session, email)
    if user is None:
        raise click.ClickException(f"No user with email {email}")
    return user


async def _show_account(email: str):
    settings = load_settings()
    async with AsyncSessionLocal() as session:
        user = await _find_user(session, email)
        account = await ledger.get_or_create_account(session, user.id, settings.starting_cash)
        await session.commit()
        positions = await ledger.list_positions(session, user.id)
        return user, account, positions


async def _deposit(email: str, amount: str):
    settings = load_settings()
    async with AsyncSessionLocal() as session:
        user = await _find_user(session, email)
        return await users_service.deposit(
            session, EventBus(), user.id, amount, starting_cash=settings.starting_cash
        )


async def _set_cash(email: str, cash):
    settings = load_settings()
    async with AsyncSessionLocal() as session:
        user = await _find_user(session, email)
        await ledger.get_or_create_account(session, user.id, settings.starting_cash)
        await ledger.set_cash(session, user.id, cash)
        await session.commit()
        account = await ledger.get_account(session, user.id)
        return account.cash


async def _pending_alerts():
    async with AsyncSessionLocal() as session:
        return await ledger.list_pending_alerts(session)


async def _monitor_tick():
    settings = load_settings()
    async with FinnhubClient(
        settings.finnhub_api_key,
        base_url=settings.finnhub_base_url,
        timeout=settings.quote_timeout,
    ) as quotes:
        monitor = AlertMonitor(AsyncSessionLocal, quotes, EventBus())
        return await monitor.run_tick()


# ============================================================================
# API operations
# ============================================================================


def _api_status(base_url: str):
    """Get health and version via API."""
    with httpx.Client(base_url=base_url, timeout=30) as client:
        health = client.get("/health/db")
        version = client.get("/api/version")
        version.raise_for_status()
        return health.json(), version.json()


# ============================================================================
# CLI: Main group
# ============================================================================


@click.group()
def cli():
    """Paper trading management commands."""
    pass


@cli.command("status")
@click.option(
    "--base-url", "-u",
    default=DEFAULT_BASE_URL,
    help=f"API base URL (default: {DEFAULT_BASE_URL})",
)
def status(base_url):
    """Check a running server's health and version via API."""
    try:
        health, version = _api_status(base_url)
    except httpx.ConnectError:
        click.echo(f"\nError: Could not connect to {base_url}", err=True)
        click.echo("Is the server running? Start it with: uvicorn papertrade.main:app", err=True)
        raise SystemExit(1)

    click.echo(f"Version:  {version['version']}")
    click.echo(f"Database: {health.get('database', 'unknown')}")


# ============================================================================
# CLI: db (direct database access)
# ============================================================================


@cli.group()
def db():
    """Direct database management (bypasses API)."""
    pass


@db.command("init")
def db_init():
    """Create any missing tables."""
    asyncio.run(init_db())
    click.echo("Database initialized.")


@db.command("clear")
@click.confirmation_option(prompt="Are you sure you want to clear all data?")
def db_clear():
    """Clear all data from the database (destructive!)."""
    click.echo("Clearing database...")
    asyncio.run(reset_db())
    click.echo("Database cleared and tables recreated.")


@db.command("status")
def db_status():
    """Show database status and record counts."""

    async def run():
        await init_db()
        return await _count_records()

    counts = asyncio.run(run())

    click.echo("\nDatabase Status:")
    click.echo("-" * 30)
    for table, count in counts.items():
        click.echo(f"  {table:<15} {count:>10,}")
    click.echo("-" * 30)
    click.echo(f"  {'Total':<15} {sum(counts.values()):>10,}")


# ============================================================================
# CLI: accounts
# ============================================================================


@cli.group()
def accounts():
    """Inspect and adjust user cash."""
    pass


@accounts.command("show")
@click.argument("email")
def accounts_show(email):
    """Show a user's cash and positions."""
    user, account, positions = asyncio.run(_show_account(email))

    click.echo(f"\n{user.email} ({user.id})")
    click.echo(f"Cash: {account.cash:,.2f}")
    if not positions:
        click.echo("No positions.")
        return

    click.echo(f"\n{'Symbol':<10} {'Qty':>10} {'Avg Price':>12}")
    click.echo("-" * 34)
    for p in positions:
        click.echo(f"{p.symbol:<10} {p.qty:>10,} {p.avg_price:>12,.2f}")


@accounts.command("deposit")
@click.argument("email")
@click.argument("amount")
def accounts_deposit(email, amount):
    """Credit AMOUNT of virtual cash to a user."""
    try:
        cash = asyncio.run(_deposit(email, amount))
    except PaperTradeError as e:
        raise click.ClickException(e.user_message)
    click.echo(f"New balance: {cash:,.2f}")


@accounts.command("set-cash")
@click.argument("email")
@click.argument("amount")
def accounts_set_cash(email, amount):
    """Overwrite a user's cash balance."""
    value = parse_money(amount)
    if value is None or value < 0:
        raise click.ClickException("Amount must be a non-negative number")
    cash = asyncio.run(_set_cash(email, to_money(value)))
    click.echo(f"Cash set to {cash:,.2f}")


# ============================================================================
# CLI: alerts / monitor
# ============================================================================


@cli.group()
def alerts():
    """Inspect price alerts."""
    pass


@alerts.command("pending")
def alerts_pending():
    """List every untriggered alert."""
    pending = asyncio.run(_pending_alerts())
    if not pending:
        click.echo("No pending alerts.")
        return

    click.echo(f"\n{'Symbol':<10} {'Condition':<10} {'Target':>12}  {'User':<36}")
    click.echo("-" * 72)
    for a in pending:
        click.echo(
            f"{a.symbol:<10} {a.condition.value:<10} {a.target_price:>12,.2f}  {a.user_id:<36}"
        )
    click.echo(f"\nTotal: {len(pending)} alerts")


@cli.group()
def monitor():
    """Run the alert monitor by hand."""
    pass


@monitor.command("tick")
def monitor_tick():
    """Run exactly one alert monitor tick and print what it did."""
    try:
        result = asyncio.run(_monitor_tick())
    except PaperTradeError as e:
        raise click.ClickException(str(e))

    click.echo(f"Pending alerts:  {result.pending}")
    click.echo(f"Symbols checked: {result.symbols}")
    click.echo(f"Quotes fetched:  {result.quotes_fetched}")
    if result.skipped:
        click.echo(f"Skipped:         {', '.join(result.skipped)}")
    click.echo(f"Triggered:       {result.triggered_count}")


if __name__ == "__main__":
    cli()
