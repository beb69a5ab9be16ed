"""CLI entry point for the Gmail MCP server."""

import logging
import os

import click
from dotenv import load_dotenv

from src.auth.store import CredentialStore

logger = logging.getLogger(__name__)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Gmail MCP server: authorize, serve, and read from the command line."""
    load_dotenv()
    logging.basicConfig(
        # basicConfig logs to stderr, which keeps the stdio MCP channel clean
        level=os.environ.get("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj = CredentialStore.from_env()


# Import and register commands after cli is defined to avoid circular imports.
from src.cli.commands import auth, check, read, serve  # noqa: E402

cli.add_command(auth)
cli.add_command(serve)
cli.add_command(read)
cli.add_command(check)
