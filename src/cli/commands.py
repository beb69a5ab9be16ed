"""CLI command implementations: all mailbox access goes through MailboxService."""

from __future__ import annotations

import asyncio
import logging

import anyio
import click
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from src.auth.authorizer import AuthError
from src.auth.store import ConfigError, CredentialStore
from src.gmail.fetcher import FetchError
from src.gmail.service import MailboxService, open_mailbox
from src.gmail.types import MAX_RESULTS_CAP, EmailFilter
from src.server.app import run_stdio

logger = logging.getLogger(__name__)
console = Console(width=200)
# `serve` owns stdout for the MCP protocol; anything human-facing goes to stderr.
err_console = Console(stderr=True)

_SETUP_HELP = """\
To set up Gmail authentication:
  1. Go to https://console.cloud.google.com/
  2. Create a new project or select an existing one
  3. Enable the Gmail API
  4. Create credentials (OAuth 2.0 Client ID)
  5. Download the credentials file and save it as {path}
     (or point GMAIL_CREDENTIALS_PATH at it)"""


def _prompt_for_code(url: str) -> str:
    """Interactive code provider: show the consent URL, read back the code."""
    console.print("Authorize this app by visiting this url:\n")
    console.print(url, soft_wrap=True)
    console.print()
    return click.prompt("Enter the code from that page here", type=str)


def _config_failure(store: CredentialStore, exc: ConfigError, out: Console) -> None:
    out.print(f"[red]Configuration error: {escape(str(exc))}[/red]\n")
    out.print(_SETUP_HELP.format(path=store.credentials_path), markup=False)
    raise SystemExit(1)


# ── auth ─────────────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def auth(store: CredentialStore) -> None:
    """Run the OAuth consent flow (if needed) and verify the connection."""
    console.print("Setting up Gmail authentication for the MCP server...\n")
    try:
        service = open_mailbox(store, code_provider=_prompt_for_code)
    except ConfigError as exc:
        _config_failure(store, exc, console)
    except AuthError as exc:
        console.print(f"[red]Authorization failed: {escape(str(exc))}[/red]")
        raise SystemExit(1)

    try:
        profile = asyncio.run(service.get_profile())
    except Exception as exc:  # noqa: BLE001
        logger.error("Connection test failed: %s", exc)
        console.print(f"[red]Error testing Gmail connection: {escape(str(exc))}[/red]")
        raise SystemExit(1)

    console.print("[green]Successfully connected to Gmail![/green]")
    console.print(f"  Email: [bold]{profile.email_address}[/bold]")
    console.print(f"  Total messages: {profile.messages_total}")
    console.print("\nSetup complete. Start the server with `gmail-mcp serve`.")


# ── serve ────────────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def serve(store: CredentialStore) -> None:
    """Run the MCP server on stdio."""
    try:
        service = open_mailbox(store)
    except ConfigError as exc:
        _config_failure(store, exc, err_console)
    except AuthError as exc:
        err_console.print(f"[red]Failed to start Gmail MCP server: {escape(str(exc))}[/red]")
        raise SystemExit(1)

    anyio.run(run_stdio, service)


# ── read ─────────────────────────────────────────────────────────────────────────


@click.command()
@click.option("--from", "sender", default=None, help="Only emails from this address.")
@click.option("--unread", is_flag=True, help="Only unread emails.")
@click.option(
    "--limit",
    default=10,
    show_default=True,
    type=click.IntRange(1, MAX_RESULTS_CAP),
    help="Number of emails.",
)
@click.option("--body", "include_body", is_flag=True, help="Decode and show message bodies.")
@click.pass_obj
def read(
    store: CredentialStore,
    sender: str | None,
    unread: bool,
    limit: int,
    include_body: bool,
) -> None:
    """List emails matching a filter."""
    email_filter = EmailFilter(
        sender_email=sender,
        only_unread=unread,
        max_results=limit,
        include_body=include_body,
    )
    try:
        service = open_mailbox(store)
        emails = asyncio.run(service.get_emails(email_filter))
    except ConfigError as exc:
        _config_failure(store, exc, console)
    except (AuthError, FetchError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise SystemExit(1)

    if not emails:
        console.print("[yellow]No emails matched.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Subject", max_width=40)
    table.add_column("From", max_width=30)
    table.add_column("Date", max_width=31)
    table.add_column("Unread", width=6)

    for i, email in enumerate(emails, start=1):
        table.add_row(
            str(i),
            escape(email.subject or "(no subject)"),
            escape(email.sender),
            escape(email.date),
            "[bold]yes[/bold]" if email.is_unread else "[dim]no[/dim]",
        )
    console.print(table)

    if include_body:
        for email in emails:
            subject = escape(email.subject or "(no subject)")
            console.print(f"\n[bold]{subject}[/bold] [dim]({email.id})[/dim]")
            if email.body:
                console.print(email.body, markup=False)
            else:
                console.print("[dim](no text body)[/dim]")


# ── check ────────────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def check(store: CredentialStore) -> None:
    """Probe the Gmail connection; exits non-zero when unreachable."""
    try:
        service: MailboxService = open_mailbox(store)
    except (ConfigError, AuthError) as exc:
        console.print(f"[red]Not connected: {escape(str(exc))}[/red]")
        raise SystemExit(1)

    if asyncio.run(service.test_connection()):
        console.print("[green]Gmail connection OK[/green]")
        return
    console.print("[red]Gmail connection failed[/red]")
    raise SystemExit(1)
