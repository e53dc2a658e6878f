"""Directory resolver — idempotent get-or-create of Drive folders."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING

from gdrive_backup.drive.client import files_url
from gdrive_backup.drive.errors import DriveApiError, QueryError
from gdrive_backup.drive.models import FOLDER_MIME_TYPE, parse_created_id
from gdrive_backup.drive.query import folder_named

if TYPE_CHECKING:
    from gdrive_backup.drive.client import DriveClient
    from gdrive_backup.drive.query import FileQuery

logger = logging.getLogger(__name__)

# Oldest first, so concurrent runs that raced on a create agree on one folder.
_FOLDER_ORDER = "createdTime"


class FolderResolver:
    """Maps (name, parent id) to a folder id, creating the folder when absent.

    Resolved paths are cached for the lifetime of the resolver, which is one
    run: a directory shared by many files is looked up at most once.
    """

    def __init__(self, client: DriveClient, query: FileQuery) -> None:
        """Initialise the resolver.

        Args:
            client: Authorized DriveClient used to create and delete folders.
            query: FileQuery used for existence checks.
        """
        self._client = client
        self._query = query
        self._cache: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def find(self, name: str, parent_id: str) -> str | None:
        """Return the id of the folder ``name`` under ``parent_id``, or None.

        When several folders share the name the oldest one is returned.
        """
        matches = self._query.list_files(
            folder_named(name, parent_id), fields="id", order_by=_FOLDER_ORDER
        )
        return matches[0].id if matches else None

    def resolve(self, name: str, parent_id: str) -> str:
        """Return the id of folder ``name`` under ``parent_id``, creating it if needed.

        Raises:
            QueryError: If the existence check fails.
            DriveError: If the folder cannot be created.
        """
        folder_id = self.find(name, parent_id)
        if folder_id is not None:
            return folder_id
        created_id = self._create(name, parent_id)
        return self._settle(name, parent_id, created_id)

    def resolve_path(self, segments: Sequence[str], root_id: str) -> str:
        """Resolve nested folders left to right starting at ``root_id``.

        Each segment depends on the id of the previous one, so the chain is
        strictly sequential. Every prefix is cached under (root_id, prefix).

        Args:
            segments: Folder names from outermost to innermost.
            root_id: Id of the folder the path is relative to.

        Returns:
            Id of the innermost folder (``root_id`` for an empty path).
        """
        parts = [segment for segment in segments if segment not in ("", ".")]
        folder_id = root_id
        for depth, name in enumerate(parts, start=1):
            key = (root_id, "/".join(parts[:depth]))
            with self._lock:
                cached = self._cache.get(key)
            if cached is None:
                cached = self.resolve(name, folder_id)
                with self._lock:
                    self._cache[key] = cached
            folder_id = cached
        return folder_id

    def _create(self, name: str, parent_id: str) -> str:
        response = self._client.post_json(
            files_url(),
            {"mimeType": FOLDER_MIME_TYPE, "name": name, "parents": [parent_id]},
            params={"fields": "id"},
        )
        folder_id = parse_created_id(response.json())
        logger.info(
            "[_create] created folder; name:%s;parent_id:%s;folder_id:%s", name, parent_id, folder_id
        )
        return folder_id

    def _settle(self, name: str, parent_id: str, created_id: str) -> str:
        """Adopt an older same-named folder if a concurrent run created one first."""
        try:
            winner = self.find(name, parent_id)
        except QueryError:
            logger.warning("[_settle] could not re-check new folder; folder_id:%s", created_id)
            return created_id
        if winner is None or winner == created_id:
            return created_id

        logger.warning(
            "[_settle] duplicate folder detected; name:%s;kept:%s;discarded:%s",
            name,
            winner,
            created_id,
        )
        try:
            self._client.delete(files_url(created_id))
        except DriveApiError as exc:
            logger.warning(
                "[_settle] failed to delete duplicate folder; folder_id:%s;status:%d",
                created_id,
                exc.status_code,
            )
        return winner
