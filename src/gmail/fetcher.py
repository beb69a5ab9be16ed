"""Search the mailbox and hydrate message ids into EmailMessage objects."""

import asyncio
import base64
import binascii
import logging
from collections.abc import Sequence
from typing import Any

from src.auth.authorizer import AuthError
from src.gmail.api import GmailApi, ProviderError
from src.gmail.types import MAX_RESULTS_CAP, EmailMessage

logger = logging.getLogger(__name__)

# Gmail system label ID
_UNREAD = "UNREAD"

_BODY_MIME_TYPES = ("text/plain", "text/html")
_METADATA_HEADERS = ["Subject", "From", "To", "Date"]

DEFAULT_MAX_CONCURRENCY = 10

_Payload = dict[str, Any]


class FetchError(Exception):
    """Raised when the mailbox search call itself fails."""


# ── Message parsing ────────────────────────────────────────────────────────────


def get_header(headers: Sequence[dict[str, Any]], name: str) -> str:
    """Case-insensitive header lookup; missing headers yield ``""``."""
    wanted = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == wanted:
            return str(header.get("value") or "")
    return ""


def parse_recipients(to_header: str) -> list[str]:
    """Split a To header on commas, trimming each address."""
    if not to_header:
        return []
    return [addr.strip() for addr in to_header.split(",") if addr.strip()]


def decode_body_data(data: str) -> str:
    """Decode Gmail's base64url body data; undecodable data yields ``""``."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        logger.debug("Could not decode body data: %s", exc)
        return ""
    return raw.decode("utf-8", errors="replace")


def extract_body(payload: _Payload) -> str:
    """Return the message body text.

    Multipart: the first part, in order, that is text/plain or text/html and
    carries data.  Parts are never concatenated and nested multiparts are not
    descended into.  Single part: the top-level body data.
    """
    parts = payload.get("parts")
    if parts is not None:
        for part in parts:
            if part.get("mimeType") not in _BODY_MIME_TYPES:
                continue
            data = (part.get("body") or {}).get("data")
            if data:
                return decode_body_data(data)
        return ""

    data = (payload.get("body") or {}).get("data")
    return decode_body_data(data) if data else ""


def parse_message(message: dict[str, Any], include_body: bool) -> EmailMessage:
    """Map a Gmail ``users.messages.get`` resource to an EmailMessage."""
    payload: _Payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    labels = [str(label) for label in message.get("labelIds") or []]

    return EmailMessage(
        id=str(message.get("id", "")),
        thread_id=str(message.get("threadId", "")),
        subject=get_header(headers, "subject"),
        sender=get_header(headers, "from"),
        to=parse_recipients(get_header(headers, "to")),
        date=get_header(headers, "date"),
        snippet=str(message.get("snippet", "")),
        body=extract_body(payload) if include_body else "",
        is_unread=_UNREAD in labels,
        labels=labels,
    )


# ── Fetcher ────────────────────────────────────────────────────────────────────


class MessageFetcher:
    """Runs the capped search and the concurrent per-message detail fetches.

    Detail fetches fan out with ``asyncio.gather`` but at most
    ``max_concurrency`` are in flight at once.
    """

    def __init__(self, api: GmailApi, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> None:
        self._api = api
        self._max_concurrency = max(1, max_concurrency)

    async def search(self, query: str, max_results: int) -> list[str]:
        """Return up to ``max_results`` message ids matching ``query``.

        Only the first page is read; the cap is a ceiling, not a page size.
        """
        limit = min(max(max_results, 1), MAX_RESULTS_CAP)
        try:
            response = await self._api.list_messages(query, limit)
        except (ProviderError, AuthError) as exc:
            raise FetchError(f"Failed to fetch emails: {exc}") from exc

        ids = [
            str(m["id"])
            for m in response.get("messages") or []
            if isinstance(m, dict) and m.get("id")
        ]
        logger.debug("Search %r matched %d message(s)", query, len(ids))
        return ids[:limit]

    async def fetch_detail(self, message_id: str, include_body: bool) -> EmailMessage | None:
        """Fetch one message; any failure yields None so the batch carries on."""
        try:
            if include_body:
                message = await self._api.get_message(message_id, format="full")
            else:
                message = await self._api.get_message(
                    message_id, format="metadata", metadata_headers=_METADATA_HEADERS
                )
            return parse_message(message, include_body)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Error getting message %s: %s", message_id, exc)
            return None

    async def fetch_details(
        self, message_ids: Sequence[str], include_body: bool
    ) -> list[EmailMessage]:
        """Fetch all ids concurrently and return the successes in input order."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(message_id: str) -> EmailMessage | None:
            async with semaphore:
                return await self.fetch_detail(message_id, include_body)

        results = await asyncio.gather(*(_bounded(mid) for mid in message_ids))
        emails = [email for email in results if email is not None]
        if len(emails) < len(results):
            logger.info("Fetched %d of %d message(s)", len(emails), len(results))
        return emails
