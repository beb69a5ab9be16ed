"""Durable storage for OAuth client credentials and the issued token."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_DEFAULT_CREDENTIALS_PATH = Path("credentials.json")
_DEFAULT_TOKEN_PATH = Path("token.json")

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

_CLIENT_TYPES = ("web", "installed")


class ConfigError(Exception):
    """Raised when the OAuth client credentials file is missing or malformed."""


@dataclass(frozen=True)
class Credentials:
    """OAuth client registration as downloaded from the Google Cloud console."""

    client_id: str
    client_secret: str
    redirect_uri: str
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI
    client_type: str = "installed"

    def client_config(self) -> dict[str, Any]:
        """Return the client-secrets mapping expected by google-auth-oauthlib."""
        return {
            self.client_type: {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uris": [self.redirect_uri],
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
            }
        }


@dataclass(frozen=True)
class TokenSet:
    """An access/refresh token pair.

    ``expiry`` is a naive UTC datetime, matching google-auth's convention.
    """

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None
    scope: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "scope": self.scope,
            "token_type": "Bearer",
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenSet":
        """Build a TokenSet from any of the token layouts we know how to read.

        Accepts our own layout, google-auth's ``Credentials.to_json()`` layout
        (``token`` / ``expiry``) and the Node googleapis layout
        (``expiry_date`` in epoch milliseconds).
        """
        access_token = data.get("access_token") or data.get("token")
        if not access_token:
            raise ValueError("token has no access_token")

        scope = data.get("scope") or data.get("scopes") or ""
        if isinstance(scope, list):
            scope = " ".join(scope)

        return cls(
            access_token=str(access_token),
            refresh_token=data.get("refresh_token") or None,
            expiry=_parse_expiry(data),
            scope=str(scope),
        )


def _parse_expiry(data: dict[str, Any]) -> datetime | None:
    raw = data.get("expiry")
    if raw:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    millis = data.get("expiry_date")
    if millis:
        return datetime.fromtimestamp(int(millis) / 1000, tz=timezone.utc).replace(tzinfo=None)
    return None


class CredentialStore:
    """Reads the client credentials file and reads/writes the token file.

    Usage::

        store = CredentialStore.from_env()
        creds = store.load_credentials()
        token = store.load_token()  # None means "authorization required"
    """

    def __init__(
        self,
        credentials_path: str | Path = _DEFAULT_CREDENTIALS_PATH,
        token_path: str | Path = _DEFAULT_TOKEN_PATH,
    ) -> None:
        self.credentials_path = Path(credentials_path)
        self.token_path = Path(token_path)

    @classmethod
    def from_env(cls) -> "CredentialStore":
        """Resolve file locations from GMAIL_CREDENTIALS_PATH / GMAIL_TOKEN_PATH."""
        return cls(
            credentials_path=Path(
                os.environ.get("GMAIL_CREDENTIALS_PATH", str(_DEFAULT_CREDENTIALS_PATH))
            ).expanduser(),
            token_path=Path(
                os.environ.get("GMAIL_TOKEN_PATH", str(_DEFAULT_TOKEN_PATH))
            ).expanduser(),
        )

    # ── Client credentials ─────────────────────────────────────────────────────

    def load_credentials(self) -> Credentials:
        """Load the OAuth client from a ``web`` or ``installed`` credentials file."""
        try:
            raw = json.loads(self.credentials_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigError(f"Credentials file not found: {self.credentials_path}") from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(
                f"Could not read credentials file {self.credentials_path}: {exc}"
            ) from exc

        if not isinstance(raw, dict):
            raise ConfigError(f"Credentials file {self.credentials_path} is not a JSON object")

        client_type = next((key for key in _CLIENT_TYPES if isinstance(raw.get(key), dict)), None)
        if client_type is None:
            raise ConfigError(
                f"Credentials file {self.credentials_path} has neither a 'web' "
                "nor an 'installed' client configuration"
            )

        section: dict[str, Any] = raw[client_type]
        redirect_uris = section.get("redirect_uris") or []
        missing = [
            name
            for name, value in (
                ("client_id", section.get("client_id")),
                ("client_secret", section.get("client_secret")),
                ("redirect_uris", redirect_uris),
            )
            if not value
        ]
        if missing:
            raise ConfigError(
                f"Credentials file {self.credentials_path} is missing: {', '.join(missing)}"
            )

        return Credentials(
            client_id=str(section["client_id"]),
            client_secret=str(section["client_secret"]),
            redirect_uri=str(redirect_uris[0]),
            auth_uri=str(section.get("auth_uri") or GOOGLE_AUTH_URI),
            token_uri=str(section.get("token_uri") or GOOGLE_TOKEN_URI),
            client_type=client_type,
        )

    # ── Token ──────────────────────────────────────────────────────────────────

    def load_token(self) -> TokenSet | None:
        """Return the persisted token, or None if there is no usable one.

        A missing or corrupt token file is the normal "not yet authorized"
        state, so it is logged rather than raised.
        """
        try:
            raw = json.loads(self.token_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug("No token file at %s", self.token_path)
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable token file %s: %s", self.token_path, exc)
            return None

        if not isinstance(raw, dict):
            logger.warning("Ignoring token file %s: not a JSON object", self.token_path)
            return None
        try:
            return TokenSet.from_dict(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring token file %s: %s", self.token_path, exc)
            return None

    def save_token(self, token: TokenSet) -> None:
        """Replace the token file atomically (temp file + rename)."""
        directory = self.token_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=directory, prefix=f".{self.token_path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(token.to_dict(), fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.token_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Token stored to %s", self.token_path)
