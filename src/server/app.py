"""MCP server exposing the mailbox as ``read-emails`` and ``test-connection`` tools."""

import json
import logging
from typing import Any

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server
from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError

from src.gmail.service import MailboxService
from src.gmail.types import DEFAULT_MAX_RESULTS, MAX_RESULTS_CAP, EmailFilter

logger = logging.getLogger(__name__)

SERVER_NAME = "gmail-mcp-server"
READ_EMAILS_TOOL = "read-emails"
TEST_CONNECTION_TOOL = "test-connection"


class ReadEmailsArgs(BaseModel):
    """Validated arguments of the ``read-emails`` tool."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Interpolated into a ``from:`` search term, so only plain addresses pass.
    sender_email: EmailStr | None = Field(default=None, alias="senderEmail")
    only_unread: bool = Field(default=False, alias="onlyUnread")
    max_results: int = Field(
        default=DEFAULT_MAX_RESULTS, ge=1, le=MAX_RESULTS_CAP, alias="maxResults"
    )
    include_body: bool = Field(default=False, alias="includeBody")

    def to_filter(self) -> EmailFilter:
        return EmailFilter(
            sender_email=self.sender_email,
            only_unread=self.only_unread,
            max_results=self.max_results,
            include_body=self.include_body,
        )


TOOLS: list[types.Tool] = [
    types.Tool(
        name=READ_EMAILS_TOOL,
        description="Read emails from Gmail with optional filtering by sender and read status",
        inputSchema={
            "type": "object",
            "properties": {
                "senderEmail": {
                    "type": "string",
                    "format": "email",
                    "description": "Filter emails by sender email address",
                },
                "onlyUnread": {
                    "type": "boolean",
                    "default": False,
                    "description": "If true, only return unread emails. If false, return all emails",
                },
                "maxResults": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_RESULTS_CAP,
                    "default": DEFAULT_MAX_RESULTS,
                    "description": f"Maximum number of emails to return (1-{MAX_RESULTS_CAP})",
                },
                "includeBody": {
                    "type": "boolean",
                    "default": False,
                    "description": "If true, decode and include each message body",
                },
            },
        },
    ),
    types.Tool(
        name=TEST_CONNECTION_TOOL,
        description="Check that the Gmail account is reachable with the stored authorization",
        inputSchema={"type": "object", "properties": {}},
    ),
]


def _text_result(text: str, *, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        isError=is_error,
    )


def _describe(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc']) or 'arguments'}: {err['msg']}"
            for err in exc.errors()
        )
    return str(exc)


# ── Tool handlers ──────────────────────────────────────────────────────────────


async def read_emails(
    service: MailboxService, arguments: dict[str, Any] | None
) -> types.CallToolResult:
    """Run ``read-emails``. Every failure becomes an error-flagged result."""
    try:
        args = ReadEmailsArgs.model_validate(arguments or {})
        emails = await service.get_emails(args.to_filter())
    except Exception as exc:  # noqa: BLE001
        logger.error("read-emails failed: %s", exc)
        return _text_result(f"Error reading emails: {_describe(exc)}", is_error=True)

    logger.info("read-emails returned %d message(s)", len(emails))
    return _text_result(json.dumps([email.to_dict() for email in emails], indent=2))


async def check_connection(service: MailboxService) -> types.CallToolResult:
    connected = await service.test_connection()
    return _text_result(json.dumps({"connected": connected}))


def create_server(service: MailboxService) -> Server:
    """Build a low-level MCP server bound to one MailboxService."""
    server: Server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        if name == READ_EMAILS_TOOL:
            return await read_emails(service, arguments)
        if name == TEST_CONNECTION_TOOL:
            return await check_connection(service)
        return _text_result(f"Unknown tool: {name}", is_error=True)

    return server


async def run_stdio(service: MailboxService) -> None:
    """Serve MCP over stdin/stdout until the client disconnects."""
    server = create_server(service)
    async with stdio_server() as (read_stream, write_stream):
        logger.info("Gmail MCP server running on stdio")
        await server.run(read_stream, write_stream, server.create_initialization_options())
