"""CLI for the Google Calendar MCP server."""

from __future__ import annotations

import asyncio
import sys
from datetime import UTC, datetime
from pathlib import Path

import click

from google_calendar_mcp import __version__
from google_calendar_mcp.auth import GoogleOAuthSession, OAuthClientSecrets, TokenStore
from google_calendar_mcp.config import ConfigError, ServerConfig, load_config
from google_calendar_mcp.context import ServerContext
from google_calendar_mcp.core.logging import configure_logging
from google_calendar_mcp.errors import CalendarAuthError
from google_calendar_mcp.server import run_server


def _load(config_path: Path | None) -> ServerConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    configure_logging(config.logging.level, config.logging.format)
    return config


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to a TOML config file (defaults to $GCAL_MCP_CONFIG).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Google Calendar tools served over the Model Context Protocol."""
    ctx.obj = config_path


@cli.command()
@click.pass_obj
def serve(config_path: Path | None) -> None:
    """Run the MCP server over stdio."""
    config = _load(config_path)
    asyncio.run(run_server(ServerContext(config)))


async def _authorize(config: ServerConfig) -> None:
    session = GoogleOAuthSession(
        config.auth.client_secret_path,
        config.auth.token_path,
        timeout_seconds=config.auth.timeout_seconds,
        open_browser=config.auth.open_browser,
    )
    try:
        await session.authorize()
    finally:
        await session.aclose()


@cli.command()
@click.pass_obj
def auth(config_path: Path | None) -> None:
    """Run the browser OAuth flow now and store the token."""
    config = _load(config_path)
    try:
        asyncio.run(_authorize(config))
    except CalendarAuthError as exc:
        click.echo(f"Authorization failed: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Token stored at {config.auth.token_path}")


@cli.command()
@click.pass_obj
def status(config_path: Path | None) -> None:
    """Report whether client secrets and a usable token are present."""
    config = _load(config_path)
    healthy = True

    try:
        secrets = OAuthClientSecrets.from_file(config.auth.client_secret_path)
        click.echo(f"Client secrets: ok ({config.auth.client_secret_path})")
        click.echo(f"Redirect URI:   {secrets.redirect_uri}")
    except CalendarAuthError as exc:
        healthy = False
        click.echo(f"Client secrets: error ({exc})")

    try:
        token = TokenStore(config.auth.token_path).load()
    except CalendarAuthError as exc:
        healthy = False
        click.echo(f"Token:          error ({exc})")
    else:
        if token is None:
            healthy = False
            click.echo(f"Token:          missing ({config.auth.token_path}); run `gcal-mcp auth`")
        else:
            if token.expiry_date is None:
                expiry = "unknown expiry"
            else:
                expires_at = datetime.fromtimestamp(token.expiry_date / 1000, tz=UTC)
                expiry = f"expires {expires_at.isoformat()}"
            state = "valid" if token.is_fresh() else "expired"
            refreshable = "refreshable" if token.refresh_token else "no refresh token"
            click.echo(f"Token:          {state}, {expiry}, {refreshable}")
            if not token.is_fresh() and not token.refresh_token:
                healthy = False

    if not healthy:
        sys.exit(1)


def main() -> None:
    cli()
