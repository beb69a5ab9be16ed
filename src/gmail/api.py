"""Async wrapper over the Gmail REST API (google-api-python-client).

The discovery client is synchronous, so each request is executed on a worker
thread with its own authorized transport from the AuthenticatedContext.
"""

import asyncio
import logging
from typing import Any

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.auth.authorizer import AuthenticatedContext

logger = logging.getLogger(__name__)

_USER_ID = "me"


class ProviderError(Exception):
    """Raised when a Gmail API call fails at the HTTP or transport level."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class GmailApi:
    """The three read-only Gmail calls the retrieval pipeline needs.

    ``resource`` lets tests substitute the discovery client; by default one is
    built from the bundled discovery document (no network round trip).
    """

    def __init__(self, context: AuthenticatedContext, resource: Any | None = None) -> None:
        self._context = context
        if resource is None:
            resource = build(
                "gmail", "v1", credentials=context.credentials, cache_discovery=False
            )
        self._users = resource.users()

    async def list_messages(self, query: str, max_results: int) -> dict[str, Any]:
        request = self._users.messages().list(
            userId=_USER_ID, q=query, maxResults=max_results
        )
        return await self._execute("messages.list", request)

    async def get_message(
        self,
        message_id: str,
        format: str = "full",
        metadata_headers: list[str] | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"userId": _USER_ID, "id": message_id, "format": format}
        if metadata_headers:
            params["metadataHeaders"] = metadata_headers
        request = self._users.messages().get(**params)
        return await self._execute("messages.get", request)

    async def get_profile(self) -> dict[str, Any]:
        request = self._users.getProfile(userId=_USER_ID)
        return await self._execute("getProfile", request)

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _execute(self, name: str, request: Any) -> dict[str, Any]:
        logger.debug("Gmail → %s", name)
        return await asyncio.to_thread(self._execute_sync, name, request)

    def _execute_sync(self, name: str, request: Any) -> dict[str, Any]:
        # AuthError from the context propagates unchanged.
        http = self._context.authorized_http()
        try:
            result = request.execute(http=http)
        except HttpError as exc:
            status = exc.resp.status if exc.resp is not None else None
            raise ProviderError(f"Gmail {name} failed ({status}): {exc}", status) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise ProviderError(f"Gmail {name} transport error: {exc}") from exc
        return result or {}
