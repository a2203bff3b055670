"""
qbolink CLI — command-line interface.

Usage:
    qbolink auth-url --config qbolink.yaml
    qbolink token --realm 4620816365213515760
    qbolink watch --verbose
    qbolink sign payload.json
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import typer
from cryptography.fernet import Fernet
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from qbolink import __version__
from qbolink.config import QBOLinkConfig
from qbolink.errors import QBOLinkError, StoreError
from qbolink.models.credential import TenantCredential
from qbolink.storage.file import FileKeyValueStore
from qbolink.storage.token_store import TokenStore

app = typer.Typer(
    name="qbolink",
    help="QuickBooks Online OAuth2 credentials and webhooks",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]qbolink[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    """qbolink — keep QuickBooks tokens fresh and route webhooks."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _load_config(config: str, realm: str | None = None) -> QBOLinkConfig:
    config_path = config if Path(config).exists() else None
    cfg = QBOLinkConfig.load(config_path)
    if realm:
        cfg.realm_id = realm
    return cfg


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise typer.Exit(code=1)


def _format_millis(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _token_store(cfg: QBOLinkConfig) -> TokenStore:
    return TokenStore(FileKeyValueStore(cfg.storage.token_dir), encryption_key=cfg.storage.encryption_key)


@app.command("auth-url")
def auth_url(
    config: str = typer.Option("qbolink.yaml", "--config", "-c", help="Path to config file"),
) -> None:
    """Print a consent URL to connect a QuickBooks company."""
    from qbolink.auth.oauth2 import AuthorizationUrlBuilder

    cfg = _load_config(config)
    try:
        cfg.require_oauth()
    except QBOLinkError as e:
        _fail(e)

    builder = AuthorizationUrlBuilder(
        cfg.oauth.client_id,
        cfg.oauth.client_secret,
        cfg.oauth.redirect_uri,
        sandbox=cfg.oauth.sandbox,
    )
    request = builder.build()
    console.print(Panel.fit(
        f"[link={request.url}]{request.url}[/link]",
        title="Open to authorize",
        subtitle="sandbox" if request.sandbox else "production",
    ))
    console.print(f"[dim]state: {request.state}[/dim]")


@app.command()
def token(
    config: str = typer.Option("qbolink.yaml", "--config", "-c", help="Path to config file"),
    realm: str = typer.Option(None, "--realm", "-r", help="Realm (tenant) id"),
) -> None:
    """Show the stored credential for a tenant (tokens are not printed)."""
    from qbolink.models.credential import now_millis

    cfg = _load_config(config, realm)
    try:
        credential = asyncio.run(_token_store(cfg).get(cfg.realm_id))
    except QBOLinkError as e:
        _fail(e)

    if credential is None:
        console.print(f"[yellow]No credential stored for tenant {cfg.realm_id or 'default'}[/yellow]")
        raise typer.Exit(code=1)

    now = now_millis()
    table = Table(title=f"Tenant {credential.tenant_id or 'default'}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Acquired", _format_millis(credential.created_at_millis))
    table.add_row("Access expires", _format_millis(credential.access_expires_at_millis))
    if credential.refresh_expires_in_seconds:
        table.add_row("Refresh expires", _format_millis(credential.refresh_expires_at_millis))
    status = "[red]expired[/red]" if credential.is_access_expired(now) else "[green]valid[/green]"
    table.add_row("Access token", status)
    console.print(table)


@app.command()
def refresh(
    config: str = typer.Option("qbolink.yaml", "--config", "-c", help="Path to config file"),
    realm: str = typer.Option(None, "--realm", "-r", help="Realm (tenant) id"),
) -> None:
    """Refresh a tenant's access token once and store the result."""
    cfg = _load_config(config, realm)
    try:
        cfg.require_oauth()
        refreshed = asyncio.run(_refresh_once(cfg))
    except QBOLinkError as e:
        _fail(e)

    console.print(
        f"[green]Refreshed[/green] tenant {refreshed.tenant_id or 'default'}, "
        f"access token valid until {_format_millis(refreshed.access_expires_at_millis)}"
    )


async def _refresh_once(cfg: QBOLinkConfig) -> TenantCredential:
    from qbolink.auth.oauth2 import TokenExchange

    store = _token_store(cfg)
    credential = await store.get(cfg.realm_id)
    if credential is None:
        raise StoreError(f"No credential stored for tenant {cfg.realm_id or 'default'}")

    exchange = TokenExchange(cfg.oauth.client_id, cfg.oauth.client_secret)
    try:
        refreshed = await exchange.refresh(credential)
    finally:
        await exchange.close()
    await store.set(cfg.realm_id, refreshed)
    return refreshed


@app.command()
def watch(
    config: str = typer.Option("qbolink.yaml", "--config", "-c", help="Path to config file"),
    realm: str = typer.Option(None, "--realm", "-r", help="Realm (tenant) id"),
) -> None:
    """Keep a tenant's tokens fresh until interrupted (Ctrl+C)."""
    cfg = _load_config(config, realm)
    try:
        cfg.require_oauth()
        asyncio.run(_watch(cfg))
    except QBOLinkError as e:
        _fail(e)
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")


async def _watch(cfg: QBOLinkConfig) -> None:
    from qbolink.connector import QuickBooksConnector
    from qbolink.scheduler import RefreshState

    connector = QuickBooksConnector(cfg, _token_store(cfg))
    await connector.start()
    if connector.scheduler.state(cfg.realm_id) is RefreshState.IDLE:
        console.print(f"[yellow]Nothing to refresh for tenant {cfg.realm_id or 'default'}[/yellow]")
        await connector.stop()
        return

    try:
        # Runs until cancelled; the loop goes idle if a refresh fails
        while connector.scheduler.state(cfg.realm_id) is not RefreshState.IDLE:
            await asyncio.sleep(1)
        console.print("[red]Refresh loop stopped after a failed refresh[/red]")
    finally:
        await connector.stop()


@app.command()
def sign(
    body: Path = typer.Argument(..., exists=True, dir_okay=False, help="File holding the raw webhook body"),
    config: str = typer.Option("qbolink.yaml", "--config", "-c", help="Path to config file"),
    secret: str = typer.Option(None, "--secret", "-s", help="Verifier token (defaults to config)"),
) -> None:
    """Compute the intuit-signature header for a webhook body."""
    from qbolink.webhooks.verifier import sign as sign_body

    key = secret or _load_config(config).webhook.verifier_token
    if not key:
        _fail(ValueError("No verifier token; pass --secret or set QBOLINK_WEBHOOK_TOKEN"))
    console.print(sign_body(body.read_bytes(), key))


@app.command("generate-key")
def generate_key() -> None:
    """Generate a Fernet key for encrypting stored credentials."""
    console.print(Fernet.generate_key().decode())


if __name__ == "__main__":
    app()
