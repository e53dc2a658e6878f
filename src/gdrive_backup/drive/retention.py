"""Retention engine — deletes backup entries older than the retention window."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from gdrive_backup.drive.client import files_url
from gdrive_backup.drive.errors import BatchError, DriveApiError
from gdrive_backup.drive.query import modified_before

if TYPE_CHECKING:
    from gdrive_backup.drive.client import DriveClient
    from gdrive_backup.drive.models import RemoteNode
    from gdrive_backup.drive.query import FileQuery

logger = logging.getLogger(__name__)

_PURGE_FIELDS = "id,name,modifiedTime"


def retention_cutoff(now: datetime, days: int) -> datetime:
    """Return the instant before which entries are eligible for deletion."""
    return now.astimezone(timezone.utc) - timedelta(days=days)


def expired(nodes: list[RemoteNode], cutoff: datetime) -> list[RemoteNode]:
    """Keep the nodes modified strictly before ``cutoff``.

    Nodes whose modification time was not returned are kept; the remote
    filter already selected them.
    """
    return [node for node in nodes if node.modified_time is None or node.modified_time < cutoff]


class RetentionPurger:
    """Deletes the children of a folder that fall outside the retention window."""

    def __init__(
        self,
        client: DriveClient,
        query: FileQuery,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialise the purger.

        Args:
            client: Authorized DriveClient used for deletions.
            query: FileQuery used to select candidates.
            clock: Returns the current UTC instant (injectable for tests).
        """
        self._client = client
        self._query = query
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def purge_older_than(self, folder_id: str, days: int) -> list[str]:
        """Delete every child of ``folder_id`` last modified more than ``days`` ago.

        Every candidate is attempted even when earlier deletions fail.

        Args:
            folder_id: Drive folder whose direct children are examined.
            days: Retention window in days.

        Returns:
            Ids of the deleted entries. Empty when nothing was old enough.

        Raises:
            QueryError: If the candidate listing fails.
            BatchError: After all candidates were attempted, if any deletion failed.
        """
        cutoff = retention_cutoff(self._clock(), days)
        candidates = self._query.list_files(
            modified_before(folder_id, cutoff), fields=_PURGE_FIELDS, follow_pages=True
        )
        victims = expired(candidates, cutoff)
        logger.info(
            "[purge_older_than] selected entries; folder_id:%s;cutoff:%s;count:%d",
            folder_id,
            cutoff.isoformat(),
            len(victims),
        )

        deleted: list[str] = []
        failures: list[tuple[str, Exception]] = []
        for node in victims:
            try:
                self._client.delete(files_url(node.id))
            except DriveApiError as exc:
                logger.error(
                    "[purge_older_than] delete failed; file_id:%s;name:%s;status:%d",
                    node.id,
                    node.name,
                    exc.status_code,
                )
                failures.append((node.name or node.id, exc))
                continue
            logger.info("[purge_older_than] deleted; file_id:%s;name:%s", node.id, node.name)
            deleted.append(node.id)

        if failures:
            raise BatchError("purge", failures)
        return deleted
