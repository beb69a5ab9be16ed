"""Tests for MailboxService and open_mailbox: GmailApi is mocked."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.auth.authorizer import AuthError, AuthState
from src.auth.store import ConfigError, CredentialStore, TokenSet
from src.gmail.api import ProviderError
from src.gmail.fetcher import FetchError
from src.gmail.service import MailboxService, open_mailbox
from src.gmail.types import EmailFilter, MailboxProfile


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_raw_message(id: str, unread: bool = False) -> dict[str, Any]:
    return {
        "id": id,
        "threadId": f"thread_{id}",
        "snippet": f"snippet {id}",
        "labelIds": ["INBOX", "UNREAD"] if unread else ["INBOX"],
        "payload": {
            "mimeType": "text/plain",
            "headers": [
                {"name": "Subject", "value": f"Subject {id}"},
                {"name": "From", "value": "alice@example.com"},
            ],
            "body": {"data": "aGVsbG8="},  # "hello"
        },
    }


def make_api(ids: list[str], failing: set[str] | None = None) -> MagicMock:
    failing = failing or set()
    api = MagicMock()
    api.list_messages = AsyncMock(return_value={"messages": [{"id": i} for i in ids]})

    async def _get(message_id: str, **_kwargs: Any) -> dict[str, Any]:
        if message_id in failing:
            raise ProviderError(f"failed {message_id}")
        return make_raw_message(message_id)

    api.get_message = AsyncMock(side_effect=_get)
    api.get_profile = AsyncMock(
        return_value={"emailAddress": "me@example.com", "messagesTotal": 42, "threadsTotal": 30}
    )
    return api


def make_service(api: MagicMock) -> tuple[MailboxService, MagicMock, MagicMock]:
    """Return (service, authorizer, api_factory)."""
    authorizer = MagicMock()
    authorizer.get_context.return_value = MagicMock(name="context")
    factory = MagicMock(return_value=api)
    return MailboxService(authorizer, api_factory=factory), authorizer, factory


# ── get_emails ─────────────────────────────────────────────────────────────────


class TestGetEmails:
    async def test_returns_hydrated_emails_in_search_order(self) -> None:
        api = make_api(["c", "a", "b"])
        service, _, _ = make_service(api)

        emails = await service.get_emails(EmailFilter())

        assert [e.id for e in emails] == ["c", "a", "b"]
        assert emails[0].subject == "Subject c"

    async def test_query_and_cap_come_from_filter(self) -> None:
        api = make_api([])
        service, _, _ = make_service(api)

        await service.get_emails(
            EmailFilter(sender_email="boss@example.com", only_unread=True, max_results=25)
        )

        api.list_messages.assert_awaited_once_with("from:boss@example.com is:unread", 25)

    async def test_empty_search_skips_detail_fetch(self) -> None:
        api = make_api([])
        service, _, _ = make_service(api)
        assert await service.get_emails(EmailFilter()) == []
        api.get_message.assert_not_called()

    async def test_include_body_is_honoured(self) -> None:
        api = make_api(["a"])
        service, _, _ = make_service(api)

        with_body = await service.get_emails(EmailFilter(include_body=True))
        without_body = await service.get_emails(EmailFilter(include_body=False))

        assert with_body[0].body == "hello"
        assert without_body[0].body == ""

    async def test_detail_failures_are_dropped(self) -> None:
        api = make_api(["m1", "m2", "m3", "m4", "m5"], failing={"m3"})
        service, _, _ = make_service(api)

        emails = await service.get_emails(EmailFilter(max_results=5))

        assert [e.id for e in emails] == ["m1", "m2", "m4", "m5"]

    async def test_search_failure_raises_fetch_error(self) -> None:
        api = make_api([])
        api.list_messages.side_effect = ProviderError("quota exceeded", status=429)
        service, _, _ = make_service(api)

        with pytest.raises(FetchError, match="quota exceeded"):
            await service.get_emails(EmailFilter())

    async def test_unauthorized_raises_auth_error(self) -> None:
        service, authorizer, factory = make_service(make_api([]))
        authorizer.get_context.side_effect = AuthError("authorization required")

        with pytest.raises(AuthError):
            await service.get_emails(EmailFilter())
        factory.assert_not_called()

    async def test_api_is_built_once(self) -> None:
        api = make_api(["a"])
        service, _, factory = make_service(api)

        await service.get_emails(EmailFilter())
        await service.get_emails(EmailFilter())
        await service.test_connection()

        factory.assert_called_once()


# ── get_profile / test_connection ──────────────────────────────────────────────


class TestConnection:
    async def test_profile(self) -> None:
        service, _, _ = make_service(make_api([]))
        assert await service.get_profile() == MailboxProfile("me@example.com", 42, 30)

    async def test_connected_when_address_returned(self) -> None:
        service, _, _ = make_service(make_api([]))
        assert await service.test_connection() is True

    async def test_false_when_no_address(self) -> None:
        api = make_api([])
        api.get_profile.return_value = {}
        service, _, _ = make_service(api)
        assert await service.test_connection() is False

    async def test_false_when_probe_fails(self) -> None:
        api = make_api([])
        api.get_profile.side_effect = ProviderError("401 invalid credentials", status=401)
        service, _, _ = make_service(api)
        assert await service.test_connection() is False

    async def test_false_when_not_authorized(self) -> None:
        service, authorizer, _ = make_service(make_api([]))
        authorizer.get_context.side_effect = AuthError("authorization required")
        assert await service.test_connection() is False


# ── open_mailbox ───────────────────────────────────────────────────────────────


class TestOpenMailbox:
    def test_with_stored_token(self, store: CredentialStore) -> None:
        store.save_token(TokenSet(access_token="ya29.stored", refresh_token="1//r"))
        service = open_mailbox(store)
        assert isinstance(service, MailboxService)
        assert service._authorizer.state is AuthState.AUTHENTICATED

    def test_without_token_requires_authorization(self, store: CredentialStore) -> None:
        with pytest.raises(AuthError, match="gmail-mcp auth"):
            open_mailbox(store)

    def test_concurrency_from_env(
        self, store: CredentialStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("GMAIL_MAX_CONCURRENCY", "3")
        store.save_token(TokenSet(access_token="ya29.stored"))
        assert open_mailbox(store)._max_concurrency == 3

    @pytest.mark.parametrize("raw", ["ten", "2.5", "0", "-4"])
    def test_bad_concurrency_raises_config_error(
        self, raw: str, store: CredentialStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("GMAIL_MAX_CONCURRENCY", raw)
        store.save_token(TokenSet(access_token="ya29.stored"))
        with pytest.raises(ConfigError, match="GMAIL_MAX_CONCURRENCY"):
            open_mailbox(store)
