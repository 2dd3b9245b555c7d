# Simple CLI for the Kite Connect core
import asyncio
import json
import sys
import webbrowser

import click

from core.config.settings import Settings
from core.logging import configure_logging, get_logger
from core.utils.exceptions import KiteCliError, create_error_context, is_retryable_error
from services.api.client import KiteApiClient
from services.instrument_data.cache import InstrumentCache

logger = get_logger(__name__, component="cli")

# Process exit codes per error kind
EXIT_CODES = {
    "auth": 3,
    "configuration": 4,
    "rate_limit": 5,
    "rate_limit_exceeded": 5,
    "network": 6,
    "server": 6,
    "validation": 7,
    "parse": 8,
    "cache": 9,
}


class WebBrowserOpener:
    """Opens the login page with the standard library's webbrowser module."""

    def open(self, url: str) -> bool:
        return webbrowser.open(url, new=2)


class ClickTokenPrompt:
    """Asks for the request token on the terminal."""

    def read_token(self, login_url: str) -> str:
        click.echo("Log in at the URL below, then paste the request_token from the redirect:", err=True)
        click.echo(f"  {login_url}", err=True)
        return click.prompt("request_token", err=True)


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _run(ctx: click.Context, coro_factory):
    """Run one async command against a fresh client and map errors to exit codes."""
    settings: Settings = ctx.obj

    async def runner():
        async with KiteApiClient.from_settings(settings) as client:
            return await coro_factory(client)

    try:
        return asyncio.run(runner())
    except KiteCliError as exc:
        logger.error("Command failed", **create_error_context(exc, ctx.command_path))
        click.echo(f"Error ({exc.kind}): {exc.message}", err=True)
        if is_retryable_error(exc):
            click.echo("This failure is transient; the command can be retried.", err=True)
        sys.exit(EXIT_CODES.get(exc.kind, 1))


@click.group()
@click.option("--log-level", default=None, help="Override logging level (e.g. DEBUG)")
@click.option("--json-logs", is_flag=True, default=False, help="Emit logs as JSON")
@click.pass_context
def cli(ctx, log_level, json_logs):
    """Kite Connect CLI"""
    settings = Settings()
    if log_level:
        settings.logging.level = log_level.upper()
    if json_logs:
        settings.logging.json_format = True
    configure_logging(settings, force=True)
    ctx.obj = settings


# ==================== AUTH ====================

@cli.group()
def auth():
    """Login, logout and session status"""


@auth.command()
@click.option("--request-token", default=None, help="Skip the browser and exchange this token")
@click.pass_context
def login(ctx, request_token):
    """Log in and store the session"""
    async def do_login(client: KiteApiClient):
        if request_token:
            return await client.auth.login(request_token)
        return await client.auth.interactive_login(WebBrowserOpener(), ClickTokenPrompt())

    session = _run(ctx, do_login)
    click.echo(f"Logged in as {session.user_id}; session valid until {session.expires_at}")


@auth.command()
@click.pass_context
def logout(ctx):
    """Invalidate the session remotely and locally"""
    async def do_logout(client: KiteApiClient):
        return await client.auth.logout()

    remote_ok = _run(ctx, do_logout)
    if remote_ok:
        click.echo("Logged out")
    else:
        click.echo("Local session cleared; the server could not be reached to invalidate it")


@auth.command()
@click.pass_context
def status(ctx):
    """Show the stored session state (no network call)"""
    async def do_status(client: KiteApiClient):
        return client.auth.status()

    _echo_json(_run(ctx, do_status).to_dict())


@auth.command("url")
@click.pass_context
def login_url(ctx):
    """Print the browser login URL"""
    async def do_url(client: KiteApiClient):
        return client.auth.login_url()

    click.echo(_run(ctx, do_url))


# ==================== INSTRUMENTS ====================

def _cache(settings: Settings, client=None) -> InstrumentCache:
    return InstrumentCache.from_settings(settings.cache, source=client)


@cli.group()
def instruments():
    """Instrument lists and the local cache"""


@instruments.command("list")
@click.argument("exchange")
@click.option("--refresh", is_flag=True, default=False, help="Ignore the cache")
@click.option("--symbol", default=None, help="Show a single trading symbol")
@click.pass_context
def list_instruments(ctx, exchange, refresh, symbol):
    """List instruments for EXCHANGE"""
    settings: Settings = ctx.obj

    async def do_list(client: KiteApiClient):
        cache = _cache(settings, client)
        if symbol:
            found = await cache.find(exchange, symbol, force_refresh=refresh)
            return [found] if found else []
        return await cache.list_or_fetch(exchange, force_refresh=refresh)

    rows = _run(ctx, do_list)
    if symbol and not rows:
        click.echo(f"{exchange.upper()}:{symbol.upper()} not found", err=True)
        sys.exit(1)
    _echo_json([instrument.to_dict() for instrument in rows])


@instruments.command()
@click.argument("exchange")
@click.pass_context
def refresh(ctx, exchange):
    """Download and cache the instrument list for EXCHANGE"""
    settings: Settings = ctx.obj

    async def do_refresh(client: KiteApiClient):
        return await _cache(settings, client).refresh(exchange)

    rows = _run(ctx, do_refresh)
    click.echo(f"Cached {len(rows)} instruments for {exchange.upper()}")


@instruments.command()
@click.pass_context
def clear(ctx):
    """Delete every cached instrument file"""
    removed = _cache(ctx.obj).clear_all()
    click.echo(f"Removed {removed} cached file(s)")


@instruments.command()
@click.pass_context
def info(ctx):
    """Show cache location and contents"""
    cache_info = _cache(ctx.obj).info()
    _echo_json({
        "cache_dir": str(cache_info.cache_dir),
        "total_size": cache_info.total_size,
        "files": [
            {
                "exchange": f.exchange,
                "day": f.day.isoformat() if f.day else None,
                "size": f.size,
                "modified": f.modified.isoformat(),
                "path": str(f.path),
            }
            for f in cache_info.files
        ],
    })


if __name__ == "__main__":
    cli()
