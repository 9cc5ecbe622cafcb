"""CLI entry point for twofactor."""

from __future__ import annotations

import asyncio
import logging
import time

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """twofactor — TOTP, SMS and email two-factor authentication."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@main.command()
def secret() -> None:
    """Generate a new TOTP secret."""
    from twofactor.otp.generator import generate_secret

    console.print(generate_secret())


@main.command()
@click.argument("secret")
@click.option("--at", "at", type=float, default=None, help="Unix time (defaults to now).")
@click.option("--step", type=int, default=None, help="Time step in seconds.")
def code(secret: str, at: float | None, step: int | None) -> None:
    """Print the TOTP code for SECRET."""
    from twofactor.config import settings
    from twofactor.otp import totp

    step_seconds = step or settings.totp_time_step_seconds
    when = time.time() if at is None else at
    try:
        value = totp.generate(secret, when, step_seconds)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1) from e
    remaining = step_seconds - int(when) % step_seconds
    console.print(f"[bold]{value}[/bold] (valid for {remaining}s)")


@main.command()
@click.argument("secret")
@click.argument("account")
@click.option("--issuer", default=None, help="Issuer label (defaults to settings).")
def uri(secret: str, account: str, issuer: str | None) -> None:
    """Print the otpauth:// provisioning URI."""
    from twofactor.config import settings
    from twofactor.otp import totp

    console.print(
        totp.provisioning_uri(secret, account, issuer or settings.issuer, settings.totp_time_step_seconds),
        soft_wrap=True,
    )


@main.command("backup-codes")
@click.option("-n", "count", type=int, default=None, help="Number of codes.")
def backup_codes(count: int | None) -> None:
    """Generate a set of backup codes."""
    from twofactor.config import settings
    from twofactor.otp.generator import generate_backup_codes

    for c in generate_backup_codes(count or settings.backup_code_count):
        console.print(c)


@main.command("init-db")
def init_db() -> None:
    """Create the two-factor tables."""
    from twofactor.db import Database
    from twofactor.store.postgres import create_schema

    async def _init() -> None:
        async with Database.from_settings(max_size=1) as database:
            await create_schema(database)
        console.print("[green]Schema ready[/green]")

    asyncio.run(_init())


@main.command()
@click.argument("user_id")
def status(user_id: str) -> None:
    """Show the 2FA status of a user."""
    from twofactor.db import Database
    from twofactor.service import create_service

    async def _status() -> None:
        async with Database.from_settings(max_size=1) as database:
            result = await create_service(database).status(user_id)

        table = Table(title=f"2FA status for {user_id}")
        table.add_column("Field")
        table.add_column("Value")
        for field, value in result.model_dump().items():
            table.add_row(field, "—" if value is None else str(value))
        console.print(table)

    asyncio.run(_status())


if __name__ == "__main__":
    main()
