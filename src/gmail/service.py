"""MailboxService: the single entry point for reading the mailbox."""

import logging
import os
from collections.abc import Callable

from src.auth.authorizer import (
    AuthenticatedContext,
    AuthError,
    AuthState,
    Authorizer,
    CodeProvider,
)
from src.auth.store import ConfigError, CredentialStore
from src.gmail.api import GmailApi
from src.gmail.fetcher import DEFAULT_MAX_CONCURRENCY, FetchError, MessageFetcher
from src.gmail.query import build_query
from src.gmail.types import EmailFilter, EmailMessage, MailboxProfile

logger = logging.getLogger(__name__)

__all__ = ["FetchError", "MailboxService", "open_mailbox"]

ApiFactory = Callable[[AuthenticatedContext], GmailApi]


class MailboxService:
    """Composes query building, search and detail fetch behind two operations.

    The Gmail client is created lazily from the authorizer's context the
    first time it is needed, then reused for the life of the service.
    """

    def __init__(
        self,
        authorizer: Authorizer,
        api_factory: ApiFactory = GmailApi,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        self._authorizer = authorizer
        self._api_factory = api_factory
        self._max_concurrency = max_concurrency
        self._api: GmailApi | None = None
        self._fetcher: MessageFetcher | None = None

    # ── Public API ─────────────────────────────────────────────────────────────

    async def get_emails(self, email_filter: EmailFilter) -> list[EmailMessage]:
        """Search with the filter, then hydrate each hit.

        Raises FetchError only if the search fails; individual messages that
        cannot be fetched are dropped.  Raises AuthError if not authorized.
        """
        fetcher = self._get_fetcher()
        query = build_query(email_filter)
        ids = await fetcher.search(query, email_filter.max_results)
        if not ids:
            return []
        return await fetcher.fetch_details(ids, include_body=email_filter.include_body)

    async def get_profile(self) -> MailboxProfile:
        data = await self._get_api().get_profile()
        return MailboxProfile(
            email_address=str(data.get("emailAddress") or ""),
            messages_total=int(data.get("messagesTotal") or 0),
            threads_total=int(data.get("threadsTotal") or 0),
        )

    async def test_connection(self) -> bool:
        """Probe the mailbox profile. Never raises; False means unreachable."""
        try:
            profile = await self.get_profile()
        except Exception as exc:  # noqa: BLE001
            logger.error("Gmail connection test failed: %s", exc)
            return False
        return bool(profile.email_address)

    # ── Internal helpers ───────────────────────────────────────────────────────

    def _get_api(self) -> GmailApi:
        if self._api is None:
            self._api = self._api_factory(self._authorizer.get_context())
        return self._api

    def _get_fetcher(self) -> MessageFetcher:
        if self._fetcher is None:
            self._fetcher = MessageFetcher(self._get_api(), self._max_concurrency)
        return self._fetcher


def _max_concurrency_from_env() -> int:
    raw = os.environ.get("GMAIL_MAX_CONCURRENCY", "").strip()
    if not raw:
        return DEFAULT_MAX_CONCURRENCY
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"GMAIL_MAX_CONCURRENCY must be an integer, got {raw!r}") from None
    if value < 1:
        raise ConfigError(f"GMAIL_MAX_CONCURRENCY must be at least 1, got {value}")
    return value


def open_mailbox(
    store: CredentialStore,
    code_provider: CodeProvider | None = None,
) -> MailboxService:
    """Authorize against the stored token (or the code provider) and return a service.

    Raises ConfigError for a bad credentials file or GMAIL_MAX_CONCURRENCY value,
    and AuthError when the flow cannot reach AUTHENTICATED (no token and no
    code provider).
    """
    max_concurrency = _max_concurrency_from_env()
    authorizer = Authorizer(store, code_provider=code_provider)
    state = authorizer.authorize()
    if state is not AuthState.AUTHENTICATED:
        raise AuthError(
            f"Authorization required: no token found at {store.token_path}. "
            "Run `gmail-mcp auth` first."
        )
    return MailboxService(authorizer, max_concurrency=max_concurrency)
