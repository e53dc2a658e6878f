"""Query engine — filtered, field-projected, ordered listing of Drive files."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from gdrive_backup.drive.client import files_url
from gdrive_backup.drive.errors import DriveApiError, QueryError
from gdrive_backup.drive.models import FOLDER_MIME_TYPE, RemoteNode, format_time, parse_file_list

if TYPE_CHECKING:
    from gdrive_backup.drive.client import DriveClient

logger = logging.getLogger(__name__)

DEFAULT_FIELDS = "id,name"
DEFAULT_ORDER_BY = "name"
# Largest page Drive serves; results beyond it need follow_pages=True.
PAGE_SIZE = 1000


def literal(value: str) -> str:
    """Render a string literal for a Drive filter expression."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def in_folder(parent_id: str) -> str:
    return f"{literal(parent_id)} in parents"


def folder_named(name: str, parent_id: str) -> str:
    """Filter matching non-trashed folders called ``name`` directly under ``parent_id``."""
    return (
        f"{in_folder(parent_id)} and mimeType = '{FOLDER_MIME_TYPE}'"
        f" and name = {literal(name)} and trashed = false"
    )


def files_in(parent_id: str) -> str:
    """Filter matching the non-folder children of ``parent_id``."""
    return f"{in_folder(parent_id)} and mimeType != '{FOLDER_MIME_TYPE}' and trashed = false"


def folders_in(parent_id: str) -> str:
    return f"{in_folder(parent_id)} and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"


def modified_before(parent_id: str, cutoff: datetime) -> str:
    """Filter matching children of ``parent_id`` last modified strictly before ``cutoff``."""
    return f"{in_folder(parent_id)} and modifiedTime < {literal(format_time(cutoff))}"


class FileQuery:
    """Single channel through which the remote namespace is inspected."""

    def __init__(self, client: DriveClient) -> None:
        self._client = client

    def list_files(
        self,
        q: str,
        fields: str = DEFAULT_FIELDS,
        order_by: str = DEFAULT_ORDER_BY,
        *,
        follow_pages: bool = False,
    ) -> list[RemoteNode]:
        """List files matching a filter expression.

        Only the first page (up to PAGE_SIZE entries) is returned unless
        ``follow_pages`` is set; a truncated result is logged as a warning.

        Args:
            q: Drive filter expression.
            fields: Comma-separated file fields to project (wrapped as ``files(...)``).
            order_by: Remote ordering clause.
            follow_pages: Follow ``nextPageToken`` cursors until exhausted.

        Returns:
            RemoteNode projections in the requested order.

        Raises:
            QueryError: If the provider rejects the filter, the transport fails,
                or the response is malformed.
        """
        params = {
            "q": q,
            "fields": f"nextPageToken,files({fields})",
            "orderBy": order_by,
            "pageSize": str(PAGE_SIZE),
        }
        nodes: list[RemoteNode] = []
        while True:
            try:
                payload = self._client.get_json(files_url(), params)
            except DriveApiError as exc:
                logger.error("[list_files] listing failed; status:%d;q:%s", exc.status_code, q)
                raise QueryError(f"Listing rejected: {exc.message}") from exc

            page, next_token = parse_file_list(payload)
            nodes.extend(page)
            if next_token is None:
                break
            if not follow_pages:
                logger.warning(
                    "[list_files] result truncated to first page; q:%s;count:%d", q, len(nodes)
                )
                break
            params["pageToken"] = next_token

        logger.debug("[list_files] listed; q:%s;count:%d", q, len(nodes))
        return nodes
