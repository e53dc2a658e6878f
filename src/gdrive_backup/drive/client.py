"""Google Drive REST transport with OAuth2 bearer authorization."""

from __future__ import annotations

import json
import logging
import shutil
import time
from dataclasses import dataclass, field
from http.client import HTTPException
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any
from urllib import request as urllib_request
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode

from gdrive_backup.drive.errors import AuthError, DeadlineExceeded, DriveApiError
from gdrive_backup.drive.models import CredentialSet

if TYPE_CHECKING:
    from gdrive_backup.config import AppConfig

logger = logging.getLogger(__name__)

API_BASE_URL = "https://www.googleapis.com/drive/v3"
UPLOAD_BASE_URL = "https://www.googleapis.com/upload/drive/v3"
DEFAULT_TIMEOUT = 60.0

JSON_CONTENT_TYPE = "application/json; charset=UTF-8"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class Deadline:
    """Wall-clock bound on a run, shared by every network call of that run.

    A Deadline without a duration never elapses but can still be cancelled.
    """

    def __init__(self, seconds: float | None = None) -> None:
        self._expires_at = None if seconds is None else time.monotonic() + seconds
        self._cancelled = False

    def cancel(self) -> None:
        """Fail every subsequent network call with DeadlineExceeded."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None if unbounded."""
        if self._expires_at is None:
            return None
        return self._expires_at - time.monotonic()

    def timeout(self, default: float) -> float:
        """Return the socket timeout to use for the next call.

        Raises:
            DeadlineExceeded: If the run was cancelled or no time is left.
        """
        if self._cancelled:
            raise DeadlineExceeded("Run was cancelled")
        remaining = self.remaining()
        if remaining is None:
            return default
        if remaining <= 0:
            raise DeadlineExceeded("Run deadline elapsed")
        return min(default, remaining)


@dataclass
class DriveResponse:
    """Status, headers and body of a completed HTTP exchange."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def json(self) -> Any:
        """Decode the body as JSON (an empty body decodes to an empty dict).

        Raises:
            DriveApiError: If the body is not valid JSON.
        """
        if not self.body:
            return {}
        try:
            return json.loads(self.body)
        except ValueError as exc:
            raise DriveApiError(self.status, "Response body is not valid JSON") from exc


class DriveClient:
    """HTTP client for the Drive v3 REST API and the OAuth2 endpoints.

    Calls made with ``authorized=True`` carry ``Authorization: <kind> <token>``
    and the optional API key; they fail with AuthError until ``authorize()``
    has been called with a resolved credential set.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, deadline: Deadline | None = None) -> None:
        """Initialise the client.

        Args:
            timeout: Per-request socket timeout in seconds.
            deadline: Optional run deadline bounding every request.
        """
        self._timeout = timeout
        self._deadline = deadline or Deadline()
        self._credentials: CredentialSet | None = None

    def authorize(self, credentials: CredentialSet) -> None:
        """Attach the resolved credential set used by every authorized call.

        Raises:
            AuthError: If the access token or token kind is empty.
        """
        if not credentials.is_resolved:
            raise AuthError("Cannot authorize with an unresolved credential")
        self._credentials = credentials

    @property
    def is_authorized(self) -> bool:
        return self._credentials is not None

    def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        data: bytes | IO[bytes] | None = None,
        headers: dict[str, str] | None = None,
        authorized: bool = True,
        with_api_key: bool = True,
        sink: IO[bytes] | None = None,
    ) -> DriveResponse:
        """Perform an HTTP request.

        Args:
            method: HTTP method.
            url: Absolute URL; may already carry a query string.
            params: Query parameters appended to the URL.
            data: Request body as bytes or a readable binary stream.
            headers: Extra request headers.
            authorized: Attach the bearer credential and API key.
            with_api_key: Append the API key, if any, to an authorized call.
                Disabled for provider-issued URLs such as upload sessions.
            sink: When given, the response body is streamed into it instead of
                being buffered in the returned DriveResponse.

        Returns:
            The completed DriveResponse.

        Raises:
            AuthError: If an authorized call is made before ``authorize()``.
            DeadlineExceeded: If the run deadline elapsed or was cancelled.
            DriveApiError: On a non-2xx status or a network failure.
        """
        query = dict(params or {})
        request_headers = dict(headers or {})
        if authorized:
            if self._credentials is None:
                raise AuthError("Drive call attempted before credentials were resolved")
            request_headers["Authorization"] = self._credentials.authorization_header
            if with_api_key and self._credentials.api_key:
                query["key"] = self._credentials.api_key

        if query:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urlencode(query)}"

        timeout = self._deadline.timeout(self._timeout)
        req = urllib_request.Request(url, data=data, headers=request_headers, method=method)
        logger.debug("[request] sending; method:%s;url:%s", method, url.split("?", 1)[0])
        try:
            with urllib_request.urlopen(req, timeout=timeout) as resp:
                if sink is not None:
                    shutil.copyfileobj(resp, sink)
                    body = b""
                else:
                    body = resp.read()
                return DriveResponse(status=resp.status, headers=dict(resp.headers.items()), body=body)
        except HTTPError as exc:
            raise DriveApiError(exc.code, _error_detail(exc)) from exc
        except (URLError, TimeoutError, ConnectionError, HTTPException) as exc:
            reason = getattr(exc, "reason", exc)
            raise DriveApiError(0, str(reason)) from exc

    def get_json(self, url: str, params: dict[str, str] | None = None, *, authorized: bool = True) -> Any:
        """Perform a GET request and decode the JSON body."""
        return self.request("GET", url, params=params, authorized=authorized).json()

    def post_json(
        self,
        url: str,
        body: dict[str, Any],
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> DriveResponse:
        """Perform an authorized POST with a JSON body."""
        request_headers = {"Content-Type": JSON_CONTENT_TYPE, **(headers or {})}
        return self.request(
            "POST",
            url,
            params=params,
            data=json.dumps(body).encode("utf-8"),
            headers=request_headers,
        )

    def post_form(self, url: str, fields: dict[str, str]) -> Any:
        """Perform an unauthorized form POST (token endpoint) and decode the JSON body."""
        return self.request(
            "POST",
            url,
            data=urlencode(fields).encode("utf-8"),
            headers={"Content-Type": FORM_CONTENT_TYPE},
            authorized=False,
        ).json()

    def delete(self, url: str) -> None:
        """Perform an authorized DELETE; no response body is expected."""
        self.request("DELETE", url)

    def download(self, url: str, destination: Path, params: dict[str, str] | None = None) -> None:
        """Stream the body of an authorized GET into ``destination``, overwriting it."""
        with destination.open("wb") as sink:
            self.request("GET", url, params=params, sink=sink)


def _error_detail(exc: HTTPError) -> str:
    """Extract the provider's error message from an HTTPError body."""
    raw = exc.read()
    try:
        error = json.loads(raw).get("error", exc.reason)
    except (ValueError, AttributeError):
        return str(exc.reason)
    if isinstance(error, dict):
        return str(error.get("message", exc.reason))
    return str(error)


def drive_client_from_config(config: AppConfig) -> DriveClient:
    """Construct an unauthorized DriveClient from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        DriveClient awaiting ``authorize()``, bounded by the configured run deadline.
    """
    return DriveClient(timeout=config.request_timeout, deadline=Deadline(config.run_timeout))


def files_url(file_id: str | None = None) -> str:
    """Return the files collection URL, or the URL of a single file resource."""
    base = f"{API_BASE_URL}/files"
    return base if file_id is None else f"{base}/{quote(file_id, safe='')}"
