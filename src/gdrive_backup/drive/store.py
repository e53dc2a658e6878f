"""Credential store persisted as a KEY=value file readable by the owner only."""

from __future__ import annotations

import logging
import stat
from pathlib import Path

from dotenv import dotenv_values, set_key, unset_key

from gdrive_backup.drive.models import CredentialSet

logger = logging.getLogger(__name__)

KEY_CLIENT_ID = "CLIENT_ID"
KEY_CLIENT_SECRET = "CLIENT_SECRET"
KEY_API_KEY = "API_KEY"
KEY_REFRESH_TOKEN = "REFRESH_TOKEN"
KEY_ACCESS_TOKEN = "ACCESS_TOKEN"
KEY_TOKEN_TYPE = "TOKEN_TYPE"

_OWNER_ONLY = stat.S_IRUSR | stat.S_IWUSR


class CredentialStore:
    """Durable key-value store for client identity and OAuth2 tokens.

    Updating a key rewrites the file in place, preserving every other key;
    an empty value removes the key's line entirely.
    """

    def __init__(self, path: Path) -> None:
        """Initialise the store.

        Args:
            path: Location of the KEY=value file; created on first write.
        """
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, str]:
        """Return every non-empty key in the file (empty dict if the file is absent)."""
        if not self._path.is_file():
            return {}
        values = dotenv_values(self._path, interpolate=False)
        return {key: value for key, value in values.items() if value}

    def get(self, key: str) -> str:
        return self.load().get(key, "")

    def update(self, key: str, value: str) -> None:
        """Persist ``key``; an empty ``value`` removes the key from the file."""
        if not value:
            if self._path.is_file() and key in dotenv_values(self._path, interpolate=False):
                unset_key(self._path, key)
                self._path.chmod(_OWNER_ONLY)
                logger.info("[update] removed key; key:%s", key)
            return

        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.touch(mode=_OWNER_ONLY)
        set_key(self._path, key, value, quote_mode="never")
        self._path.chmod(_OWNER_ONLY)
        logger.info("[update] stored key; key:%s;path:%s", key, self._path)

    def load_credentials(self) -> CredentialSet:
        """Build a CredentialSet from the persisted keys."""
        values = self.load()
        return CredentialSet(
            client_id=values.get(KEY_CLIENT_ID, ""),
            client_secret=values.get(KEY_CLIENT_SECRET, ""),
            api_key=values.get(KEY_API_KEY, ""),
            refresh_token=values.get(KEY_REFRESH_TOKEN, ""),
            access_token=values.get(KEY_ACCESS_TOKEN, ""),
            token_type=values.get(KEY_TOKEN_TYPE, ""),
        )
