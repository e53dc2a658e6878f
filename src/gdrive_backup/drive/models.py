"""Data models and response decoders for the Google Drive v3 and OAuth2 APIs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from gdrive_backup.drive.errors import AuthError, DriveError, QueryError

# Drive API JSON field names
FIELD_ID = "id"
FIELD_NAME = "name"
FIELD_MIME_TYPE = "mimeType"
FIELD_PARENTS = "parents"
FIELD_MODIFIED_TIME = "modifiedTime"
FIELD_FILES = "files"
FIELD_NEXT_PAGE_TOKEN = "nextPageToken"

# OAuth2 JSON field names
FIELD_ACCESS_TOKEN = "access_token"
FIELD_TOKEN_TYPE = "token_type"
FIELD_REFRESH_TOKEN = "refresh_token"
FIELD_EXPIRES_IN = "expires_in"
FIELD_ERROR = "error"
FIELD_ERROR_DESCRIPTION = "error_description"

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
ROOT_FOLDER_ID = "root"


@dataclass
class CredentialSet:
    """Client identity plus the OAuth2 tokens used to authorize Drive calls.

    The refresh token and client identity are long-lived and persisted; the
    access token is short-lived (nominally one hour).
    """

    client_id: str = ""
    client_secret: str = ""
    api_key: str = ""
    refresh_token: str = ""
    access_token: str = ""
    token_type: str = ""
    expires_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        """True when both the access token and its kind are present."""
        return bool(self.access_token and self.token_type)

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"


@dataclass(frozen=True)
class RemoteNode:
    """A file or folder in Drive, projected to the fields that were requested.

    Fields that were not requested are None.
    """

    id: str
    name: str | None = None
    is_folder: bool | None = None
    parent_id: str | None = None
    modified_time: datetime | None = None


@dataclass(frozen=True)
class UploadSession:
    """An initiated resumable upload, consumed once by the content transfer."""

    uri: str
    folder_id: str
    size: int
    content_type: str


@dataclass(frozen=True)
class TokenGrant:
    """Decoded token-endpoint response."""

    access_token: str
    token_type: str
    refresh_token: str = ""
    expires_in: int | None = None


def parse_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by Drive (e.g. "2024-05-01T10:00:00.000Z").

    Raises:
        ValueError: If the value is not a valid timestamp.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_time(value: datetime) -> str:
    """Format an instant as an RFC 3339 UTC literal with milliseconds for use in a Drive filter."""
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_node(raw: Any) -> RemoteNode:
    """Map a raw Drive file resource to a RemoteNode.

    Raises:
        QueryError: If the resource is not an object or has no id.
    """
    if not isinstance(raw, dict) or not isinstance(raw.get(FIELD_ID), str):
        raise QueryError(f"Malformed file resource: {raw!r}")

    mime_type = raw.get(FIELD_MIME_TYPE)
    parents = raw.get(FIELD_PARENTS) or []
    modified = raw.get(FIELD_MODIFIED_TIME)
    try:
        modified_time = parse_time(modified) if isinstance(modified, str) else None
    except ValueError as exc:
        raise QueryError(f"Malformed modifiedTime {modified!r}") from exc

    return RemoteNode(
        id=raw[FIELD_ID],
        name=raw.get(FIELD_NAME),
        is_folder=None if mime_type is None else mime_type == FOLDER_MIME_TYPE,
        parent_id=parents[0] if parents else None,
        modified_time=modified_time,
    )


def parse_file_list(payload: Any) -> tuple[list[RemoteNode], str | None]:
    """Decode a files.list response.

    Returns:
        A tuple of (nodes, next_page_token); the token is None on the last page.

    Raises:
        QueryError: If the payload has no ``files`` array or an entry is malformed.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get(FIELD_FILES), list):
        raise QueryError("List response has no 'files' array")
    nodes = [parse_node(raw) for raw in payload[FIELD_FILES]]
    next_token = payload.get(FIELD_NEXT_PAGE_TOKEN) or None
    return nodes, next_token


def parse_created_id(payload: Any) -> str:
    """Extract the id of a newly created resource.

    Raises:
        DriveError: If the response carries no id.
    """
    if isinstance(payload, dict) and isinstance(payload.get(FIELD_ID), str) and payload[FIELD_ID]:
        return str(payload[FIELD_ID])
    raise DriveError("Create response did not contain an id")


def parse_token_grant(payload: Any) -> TokenGrant:
    """Decode a token-endpoint response.

    Raises:
        AuthError: If the payload is not an object or carries no access token.
    """
    if not isinstance(payload, dict):
        raise AuthError("Token endpoint returned a non-object payload")
    if not payload.get(FIELD_ACCESS_TOKEN):
        error = payload.get(FIELD_ERROR, "unknown_error")
        description = payload.get(FIELD_ERROR_DESCRIPTION, "No description provided")
        raise AuthError(f"Token exchange failed: {error} ({description})")

    expires_in = _as_int(payload.get(FIELD_EXPIRES_IN))
    return TokenGrant(
        access_token=str(payload[FIELD_ACCESS_TOKEN]),
        token_type=str(payload.get(FIELD_TOKEN_TYPE) or ""),
        refresh_token=str(payload.get(FIELD_REFRESH_TOKEN) or ""),
        expires_in=expires_in,
    )


def parse_token_info(payload: Any) -> int | None:
    """Return the remaining lifetime in seconds from a tokeninfo response, if present."""
    if not isinstance(payload, dict):
        return None
    return _as_int(payload.get(FIELD_EXPIRES_IN))


def _as_int(value: Any) -> int | None:
    # tokeninfo reports numbers as JSON strings
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
