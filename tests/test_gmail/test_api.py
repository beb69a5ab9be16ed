"""Tests for GmailApi: the discovery resource and auth context are mocked."""

from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from src.auth.authorizer import AuthError
from src.gmail.api import GmailApi, ProviderError


# ── Fixtures ───────────────────────────────────────────────────────────────────


@pytest.fixture
def context() -> MagicMock:
    ctx = MagicMock()
    ctx.authorized_http.return_value = MagicMock(name="http")
    return ctx


@pytest.fixture
def resource() -> MagicMock:
    return MagicMock()


@pytest.fixture
def api(context: MagicMock, resource: MagicMock) -> GmailApi:
    return GmailApi(context, resource=resource)


def _messages(resource: MagicMock) -> MagicMock:
    return resource.users.return_value.messages.return_value


# ── Requests ───────────────────────────────────────────────────────────────────


class TestRequests:
    async def test_list_messages(
        self, api: GmailApi, resource: MagicMock, context: MagicMock
    ) -> None:
        request = _messages(resource).list.return_value
        request.execute.return_value = {"messages": [{"id": "a"}]}

        result = await api.list_messages("from:a@b.com", 25)

        assert result == {"messages": [{"id": "a"}]}
        _messages(resource).list.assert_called_once_with(userId="me", q="from:a@b.com", maxResults=25)
        request.execute.assert_called_once_with(http=context.authorized_http.return_value)

    async def test_get_message_full(self, api: GmailApi, resource: MagicMock) -> None:
        _messages(resource).get.return_value.execute.return_value = {"id": "a"}
        assert await api.get_message("a") == {"id": "a"}
        _messages(resource).get.assert_called_once_with(userId="me", id="a", format="full")

    async def test_get_message_metadata_headers(self, api: GmailApi, resource: MagicMock) -> None:
        _messages(resource).get.return_value.execute.return_value = {"id": "a"}
        await api.get_message("a", format="metadata", metadata_headers=["Subject"])
        _messages(resource).get.assert_called_once_with(
            userId="me", id="a", format="metadata", metadataHeaders=["Subject"]
        )

    async def test_get_profile(self, api: GmailApi, resource: MagicMock) -> None:
        resource.users.return_value.getProfile.return_value.execute.return_value = {
            "emailAddress": "me@example.com"
        }
        assert await api.get_profile() == {"emailAddress": "me@example.com"}
        resource.users.return_value.getProfile.assert_called_once_with(userId="me")

    async def test_empty_response_becomes_empty_dict(self, api: GmailApi, resource: MagicMock) -> None:
        _messages(resource).list.return_value.execute.return_value = None
        assert await api.list_messages("", 10) == {}

    async def test_each_request_gets_its_own_transport(
        self, api: GmailApi, resource: MagicMock, context: MagicMock
    ) -> None:
        _messages(resource).get.return_value.execute.return_value = {}
        await api.get_message("a")
        await api.get_message("b")
        assert context.authorized_http.call_count == 2


# ── Errors ─────────────────────────────────────────────────────────────────────


class TestErrors:
    async def test_http_error_becomes_provider_error(self, api: GmailApi, resource: MagicMock) -> None:
        response = httplib2.Response({"status": 404})
        response.reason = "Not Found"
        _messages(resource).get.return_value.execute.side_effect = HttpError(
            response, b'{"error": {"message": "Requested entity was not found."}}'
        )

        with pytest.raises(ProviderError) as excinfo:
            await api.get_message("missing")

        assert excinfo.value.status == 404
        assert "messages.get" in str(excinfo.value)

    async def test_transport_error_becomes_provider_error(
        self, api: GmailApi, resource: MagicMock
    ) -> None:
        _messages(resource).list.return_value.execute.side_effect = ConnectionResetError("reset")
        with pytest.raises(ProviderError, match="transport error"):
            await api.list_messages("", 10)

    async def test_auth_error_propagates(
        self, api: GmailApi, context: MagicMock, resource: MagicMock
    ) -> None:
        context.authorized_http.side_effect = AuthError("Token refresh failed")
        with pytest.raises(AuthError):
            await api.get_profile()
        resource.users.return_value.getProfile.return_value.execute.assert_not_called()
