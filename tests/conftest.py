"""Shared pytest fixtures."""

import json
from pathlib import Path

import pytest

from src.auth.store import CredentialStore


@pytest.fixture
def client_secrets() -> dict[str, dict[str, object]]:
    """An 'installed' OAuth client as downloaded from the Cloud console."""
    return {
        "installed": {
            "client_id": "client-123.apps.googleusercontent.com",
            "client_secret": "s3cret",
            "redirect_uris": ["http://localhost"],
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
        }
    }


@pytest.fixture
def store(tmp_path: Path, client_secrets: dict[str, dict[str, object]]) -> CredentialStore:
    """CredentialStore with a valid credentials file and no token yet."""
    credentials_path = tmp_path / "credentials.json"
    credentials_path.write_text(json.dumps(client_secrets))
    return CredentialStore(credentials_path, tmp_path / "token.json")
