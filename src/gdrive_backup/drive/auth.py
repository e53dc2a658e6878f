"""OAuth2 token lifecycle for the Drive API: introspect, authorize, refresh."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from gdrive_backup.drive.errors import AuthError, DriveApiError
from gdrive_backup.drive.models import CredentialSet, TokenGrant, parse_token_grant, parse_token_info
from gdrive_backup.drive.store import (
    KEY_ACCESS_TOKEN,
    KEY_API_KEY,
    KEY_CLIENT_ID,
    KEY_CLIENT_SECRET,
    KEY_REFRESH_TOKEN,
    KEY_TOKEN_TYPE,
    CredentialStore,
)

if TYPE_CHECKING:
    from gdrive_backup.drive.client import DriveClient

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URL = "https://accounts.google.com/o/oauth2/token"
TOKENINFO_URL = "https://www.googleapis.com/oauth2/v3/tokeninfo"
REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"
# drive.file only grants access to files created by the same client id
SCOPE = "https://www.googleapis.com/auth/drive.file"

# A cached access token with less remaining lifetime than this is renewed.
MIN_REMAINING_LIFETIME = 60

Prompt = Callable[[str], str]


def authorization_url(client_id: str) -> str:
    """Build the consent URL the operator opens to obtain a one-time code."""
    params = {
        "client_id": client_id,
        "redirect_uri": REDIRECT_URI,
        "scope": SCOPE,
        "response_type": "code",
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def ensure_client_identity(store: CredentialStore, prompt: Prompt | None) -> None:
    """Prompt for and persist any missing client identity values.

    On a fresh store the optional API key and refresh token are asked for
    first; the client id and secret are mandatory.

    Args:
        store: Credential store to read and update.
        prompt: Callable asking the operator for a value, or None when
            running non-interactively.

    Raises:
        AuthError: If a mandatory value is missing and cannot be prompted for.
    """
    values = store.load()
    if not values.get(KEY_CLIENT_ID):
        _ensure_value(store, values, KEY_API_KEY, prompt, mandatory=False)
        _ensure_value(store, values, KEY_REFRESH_TOKEN, prompt, mandatory=False)
    _ensure_value(store, values, KEY_CLIENT_ID, prompt, mandatory=True)
    _ensure_value(store, values, KEY_CLIENT_SECRET, prompt, mandatory=True)


def _ensure_value(
    store: CredentialStore,
    values: dict[str, str],
    key: str,
    prompt: Prompt | None,
    *,
    mandatory: bool,
) -> None:
    if values.get(key):
        return
    value = prompt(f"{key}: ").strip() if prompt is not None else ""
    if not value:
        if mandatory:
            raise AuthError(f"No value for {key} provided")
        return
    store.update(key, value)
    values[key] = value


class TokenManager:
    """Resolves the bearer credential used by every Drive call of a run.

    ``ensure_access_token`` runs once per process, before any other network
    operation, and authorizes the shared DriveClient on success. Components
    downstream never renew credentials themselves.
    """

    def __init__(
        self,
        client: DriveClient,
        store: CredentialStore,
        prompt: Prompt | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialise the token manager.

        Args:
            client: DriveClient used for the OAuth2 endpoints and authorized afterwards.
            store: Credential store holding client identity and tokens.
            prompt: Callable presenting a message and returning the operator's
                answer; required only when no refresh token is stored.
            clock: Returns the current UTC instant (injectable for tests).
        """
        self._client = client
        self._store = store
        self._prompt = prompt
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def ensure_access_token(self) -> CredentialSet:
        """Return a resolved credential set, renewing the access token if needed.

        Steps:
            0. Prompt for and persist any missing client identity values.
            1. If an access token is cached, introspect it and discard it when
               the remaining lifetime is unknown or under 60 seconds.
            2. Without a refresh token, run the interactive authorization-code
               exchange and persist the refresh token.
            3. Without an access token, exchange the refresh token for a new
               one and persist the access token and token type.
            4. Fail if the access token or token type is still empty.

        Returns:
            The resolved CredentialSet, also attached to the DriveClient.

        Raises:
            AuthError: If the credential cannot be resolved.
        """
        ensure_client_identity(self._store, self._prompt)
        credentials = self._store.load_credentials()

        if credentials.access_token:
            remaining = self._remaining_lifetime(credentials.access_token)
            if remaining is None or remaining < MIN_REMAINING_LIFETIME:
                logger.info(
                    "[ensure_access_token] discarding cached access token; remaining:%s", remaining
                )
                credentials.access_token = ""
            else:
                credentials.expires_at = self._clock() + timedelta(seconds=remaining)

        if not credentials.refresh_token:
            self._authorize_interactively(credentials)
        if not credentials.access_token:
            self._refresh(credentials)

        if not credentials.is_resolved:
            logger.error("[ensure_access_token] access token and/or token type unresolved")
            raise AuthError("Cannot resolve access token and/or token type")

        self._client.authorize(credentials)
        return credentials

    def _remaining_lifetime(self, access_token: str) -> int | None:
        """Ask the tokeninfo endpoint how many seconds the token has left."""
        try:
            payload = self._client.get_json(
                TOKENINFO_URL, {"access_token": access_token}, authorized=False
            )
        except DriveApiError as exc:
            logger.info("[_remaining_lifetime] token introspection rejected; status:%d", exc.status_code)
            return None
        return parse_token_info(payload)

    def _authorize_interactively(self, credentials: CredentialSet) -> None:
        if self._prompt is None:
            raise AuthError("No refresh token stored and no operator available to authorize")

        url = authorization_url(credentials.client_id)
        code = self._prompt(f"Open {url} and paste the authorization code here\nCODE: ").strip()
        if not code:
            raise AuthError("No authorization code provided")

        grant = self._exchange(
            {
                "code": code,
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "redirect_uri": REDIRECT_URI,
                "grant_type": "authorization_code",
            }
        )
        self._apply(credentials, grant)
        credentials.refresh_token = grant.refresh_token
        self._store.update(KEY_REFRESH_TOKEN, credentials.refresh_token)
        logger.info("[_authorize_interactively] authorization code exchanged")

    def _refresh(self, credentials: CredentialSet) -> None:
        grant = self._exchange(
            {
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "refresh_token": credentials.refresh_token,
                "grant_type": "refresh_token",
            }
        )
        self._apply(credentials, grant)
        self._store.update(KEY_ACCESS_TOKEN, credentials.access_token)
        self._store.update(KEY_TOKEN_TYPE, credentials.token_type)
        if grant.refresh_token and grant.refresh_token != credentials.refresh_token:
            credentials.refresh_token = grant.refresh_token
            self._store.update(KEY_REFRESH_TOKEN, credentials.refresh_token)
        logger.info("[_refresh] access token refreshed")

    def _exchange(self, fields: dict[str, str]) -> TokenGrant:
        try:
            payload = self._client.post_form(TOKEN_URL, fields)
        except DriveApiError as exc:
            logger.error(
                "[_exchange] token endpoint rejected grant; grant_type:%s;status:%d",
                fields["grant_type"],
                exc.status_code,
            )
            raise AuthError(f"Token exchange failed: {exc.message}") from exc
        return parse_token_grant(payload)

    def _apply(self, credentials: CredentialSet, grant: TokenGrant) -> None:
        credentials.access_token = grant.access_token
        credentials.token_type = grant.token_type
        credentials.expires_at = (
            None if grant.expires_in is None else self._clock() + timedelta(seconds=grant.expires_in)
        )
