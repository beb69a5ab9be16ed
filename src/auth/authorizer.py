"""OAuth2 authorization-code flow, token refresh, and the authenticated context."""

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any
from urllib.parse import parse_qs, urlparse

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials as GoogleCredentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from requests import RequestException

from src.auth.store import Credentials, CredentialStore, TokenSet

logger = logging.getLogger(__name__)

READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"

#: Receives the authorization URL, returns the one-time code the user pasted.
CodeProvider = Callable[[str], str]

#: Builds an oauthlib flow for the given client registration.
FlowFactory = Callable[[Credentials], Any]


class AuthError(Exception):
    """Raised when no valid token is available or a token exchange/refresh fails."""


class AuthState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_USER_CONSENT = "awaiting_user_consent"
    AUTHENTICATED = "authenticated"


def token_set_from_google(creds: GoogleCredentials) -> TokenSet:
    """Project google-auth credentials onto the persisted TokenSet shape."""
    return TokenSet(
        access_token=str(creds.token),
        refresh_token=creds.refresh_token,
        expiry=creds.expiry,
        scope=" ".join(creds.scopes or []),
    )


def _default_flow(client: Credentials) -> Flow:
    return Flow.from_client_config(
        client.client_config(),
        scopes=[READONLY_SCOPE],
        redirect_uri=client.redirect_uri,
    )


def _extract_code(raw: str) -> str:
    """Accept either the bare code or the whole redirected URL."""
    text = raw.strip()
    if "code=" in text:
        values = parse_qs(urlparse(text).query).get("code")
        if values:
            return values[0]
    return text


class AuthenticatedContext:
    """Binds one set of google-auth credentials to outbound Gmail requests.

    Requests run on worker threads, so refresh is guarded by a lock: at most
    one refresh is in flight and every other caller waits for its result.
    """

    def __init__(
        self,
        credentials: GoogleCredentials,
        on_refresh: Callable[[TokenSet], None] | None = None,
    ) -> None:
        self._credentials = credentials
        self._on_refresh = on_refresh
        self._refresh_lock = threading.Lock()

    @property
    def credentials(self) -> GoogleCredentials:
        return self._credentials

    def token_set(self) -> TokenSet:
        return token_set_from_google(self._credentials)

    def ensure_fresh(self) -> GoogleCredentials:
        """Return valid credentials, refreshing the access token if it expired.

        A token stored without an expiry cannot be judged, so it is refreshed
        once on first use when a refresh token is available.
        """
        with self._refresh_lock:
            creds = self._credentials
            if creds.valid and (creds.expiry is not None or not creds.refresh_token):
                return creds
            if not creds.refresh_token:
                raise AuthError(
                    "Access token expired and no refresh token is stored; "
                    "re-run the authorization flow"
                )
            try:
                creds.refresh(Request())
            except (RefreshError, TransportError) as exc:
                raise AuthError(f"Token refresh failed: {exc}") from exc
            logger.info("Access token refreshed (expires %s UTC)", creds.expiry)

            if self._on_refresh is not None:
                try:
                    self._on_refresh(token_set_from_google(creds))
                except OSError as exc:
                    logger.warning("Could not persist refreshed token: %s", exc)
            return creds

    def authorized_http(self) -> AuthorizedHttp:
        """Return a per-request authorized transport.

        httplib2 connections are not thread-safe, so each request gets its own.
        Automatic refresh-on-401 is disabled; refresh only goes through
        ``ensure_fresh`` so it stays serialized.
        """
        return AuthorizedHttp(
            self.ensure_fresh(), http=httplib2.Http(), refresh_status_codes=()
        )


class Authorizer:
    """Owns the UNAUTHENTICATED → AWAITING_USER_CONSENT → AUTHENTICATED lifecycle.

    ``AUTHENTICATED`` is terminal for the process; token refresh happens
    inside it via the AuthenticatedContext.

    Usage::

        authorizer = Authorizer(CredentialStore.from_env(), code_provider=prompt)
        if authorizer.authorize() is AuthState.AUTHENTICATED:
            ctx = authorizer.get_context()
    """

    def __init__(
        self,
        store: CredentialStore,
        code_provider: CodeProvider | None = None,
        flow_factory: FlowFactory | None = None,
    ) -> None:
        self._store = store
        self._code_provider = code_provider
        self._flow_factory = flow_factory or _default_flow
        self._client: Credentials | None = None
        self._flow: Any = None
        self._context: AuthenticatedContext | None = None
        self._state = AuthState.UNAUTHENTICATED
        self.authorization_url: str | None = None

    @property
    def state(self) -> AuthState:
        return self._state

    # ── Public API ─────────────────────────────────────────────────────────────

    def authorize(self) -> AuthState:
        """Advance the flow as far as possible and return the resulting state.

        Raises ConfigError if the client credentials cannot be loaded.  With
        no stored token and no code provider, stops in AWAITING_USER_CONSENT
        and leaves ``authorization_url`` for the caller to present.
        """
        if self._state is AuthState.AUTHENTICATED:
            return self._state

        client = self._load_client()
        token = self._store.load_token()
        if token is not None:
            self._authenticate(client, token)
            logger.info("Using stored token from %s", self._store.token_path)
            return self._state

        self._begin_consent(client)
        if self._code_provider is None:
            logger.info("No stored token; user consent required")
            return self._state

        assert self.authorization_url is not None
        code = self._code_provider(self.authorization_url)
        self.exchange_code(code)
        return self._state

    def exchange_code(self, code: str) -> AuthenticatedContext:
        """Trade a one-time authorization code for tokens and persist them.

        On failure the flow is reset to UNAUTHENTICATED and AuthError raised.
        """
        if self._state is not AuthState.AWAITING_USER_CONSENT or self._flow is None:
            raise AuthError("No authorization in progress; call authorize() first")

        flow = self._flow
        try:
            flow.fetch_token(code=_extract_code(code))
        except (OAuth2Error, RequestException, ValueError) as exc:
            self._reset()
            raise AuthError(f"Authorization code exchange failed: {exc}") from exc

        token = token_set_from_google(flow.credentials)
        try:
            self._store.save_token(token)
        except OSError as exc:
            self._reset()
            raise AuthError(f"Could not store token: {exc}") from exc

        assert self._client is not None
        return self._authenticate(self._client, token)

    def get_context(self) -> AuthenticatedContext:
        if self._state is not AuthState.AUTHENTICATED or self._context is None:
            raise AuthError("authorization required")
        return self._context

    # ── Internal helpers ───────────────────────────────────────────────────────

    def _load_client(self) -> Credentials:
        if self._client is None:
            self._client = self._store.load_credentials()
        return self._client

    def _begin_consent(self, client: Credentials) -> None:
        self._flow = self._flow_factory(client)
        url, _state = self._flow.authorization_url(access_type="offline", prompt="consent")
        self.authorization_url = url
        self._state = AuthState.AWAITING_USER_CONSENT
        logger.debug("Authorization URL issued for client %s", client.client_id)

    def _authenticate(self, client: Credentials, token: TokenSet) -> AuthenticatedContext:
        creds = GoogleCredentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=client.token_uri,
            client_id=client.client_id,
            client_secret=client.client_secret,
            scopes=token.scope.split() or [READONLY_SCOPE],
            expiry=token.expiry,
        )
        self._context = AuthenticatedContext(creds, on_refresh=self._store.save_token)
        self._flow = None
        self.authorization_url = None
        self._state = AuthState.AUTHENTICATED
        return self._context

    def _reset(self) -> None:
        self._flow = None
        self.authorization_url = None
        self._context = None
        self._state = AuthState.UNAUTHENTICATED
