"""Google OAuth credential loading."""

import logging
from typing import Optional

from google.oauth2.credentials import Credentials

from calmirror.auth.token_store import TokenStore
from calmirror.config import Settings, get_settings

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]


class MissingCredentialError(RuntimeError):
    """No usable refresh credential is stored for a profile."""


def get_token_store(settings: Optional[Settings] = None) -> TokenStore:
    settings = settings or get_settings()
    return TokenStore(settings.token_store_dir, settings.token_store_secret)


def load_refresh_token(store: TokenStore, profile_key: str) -> Optional[str]:
    """
    Read the refresh token saved for a profile.

    Accepts both {"tokens": {"refresh_token": ...}} (the shape written by the
    OAuth helper) and a flat {"refresh_token": ...} payload.
    """
    payload = store.load(profile_key)
    if not payload:
        return None
    tokens = payload.get("tokens", payload)
    return tokens.get("refresh_token")


def load_credentials(
    profile_key: str,
    store: Optional[TokenStore] = None,
    settings: Optional[Settings] = None,
) -> Credentials:
    """Build refreshable Google credentials for a profile."""
    settings = settings or get_settings()
    store = store or get_token_store(settings)

    refresh_token = load_refresh_token(store, profile_key)
    if not refresh_token:
        raise MissingCredentialError(f"No refresh token for profile {profile_key}")

    if not settings.google_client_id or not settings.google_client_secret:
        raise MissingCredentialError("GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not configured")

    return Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=settings.google_token_uri,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        scopes=SCOPES,
    )
