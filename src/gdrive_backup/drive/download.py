"""Download engine — fetches whole Drive files into a local staging directory."""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from gdrive_backup.drive.client import files_url
from gdrive_backup.drive.errors import DriveError, NoFullBackupError, StagingError
from gdrive_backup.drive.query import DEFAULT_FIELDS, DEFAULT_ORDER_BY

if TYPE_CHECKING:
    from gdrive_backup.drive.client import DriveClient
    from gdrive_backup.drive.models import RemoteNode
    from gdrive_backup.drive.query import FileQuery

logger = logging.getLogger(__name__)

DEFAULT_FULL_BACKUP_SUFFIX = ".full.bkp"
STAGING_PREFIX = "gdrive-restore-"


def select_restore_window(
    nodes: Sequence[RemoteNode], suffix: str = DEFAULT_FULL_BACKUP_SUFFIX
) -> list[RemoteNode]:
    """Return the latest full backup and every entry listed after it.

    Args:
        nodes: Backup entries ordered by name, oldest first.
        suffix: Name suffix marking a full backup.

    Returns:
        The trailing run of ``nodes`` starting at the last full backup.

    Raises:
        NoFullBackupError: If no entry name ends with ``suffix``.
    """
    for index in range(len(nodes) - 1, -1, -1):
        if (nodes[index].name or "").endswith(suffix):
            return list(nodes[index:])
    raise NoFullBackupError(f"No file ending in {suffix} found among {len(nodes)} entries")


def _discard_partial(destination: Path) -> None:
    if destination.is_file():
        destination.unlink()


class FileDownloader:
    """Downloads Drive files by id into a fresh temporary directory."""

    def __init__(self, client: DriveClient, query: FileQuery) -> None:
        self._client = client
        self._query = query

    def fetch(
        self,
        ids: Sequence[str],
        names: Sequence[str],
        staging: Path | None = None,
    ) -> Path:
        """Download each ``ids[i]`` to ``staging/names[i]``.

        Existing files of the same name are overwritten. Only the final path
        component of each name is used, so remote names cannot escape the
        staging directory.

        Args:
            ids: Drive file ids.
            names: Local file names, positionally paired with ``ids``.
            staging: Target directory; a new temporary directory when omitted.

        Returns:
            The staging directory.

        Raises:
            ValueError: If ``ids`` and ``names`` differ in length.
            DriveApiError: If a download fails; the partial file is removed.
            StagingError: If a name has no usable final component, or the staging
                directory or a file in it cannot be written.
        """
        if len(ids) != len(names):
            raise ValueError(f"Got {len(ids)} ids but {len(names)} names")

        try:
            if staging is None:
                staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX))
            else:
                staging.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            target = str(staging) if staging is not None else tempfile.gettempdir()
            raise StagingError(target, exc.strerror or str(exc)) from exc

        for file_id, name in zip(ids, names):
            local_name = Path(name).name
            if local_name in ("", ".", ".."):
                raise StagingError(name, f"unusable local file name for {file_id}")
            destination = staging / local_name
            try:
                self._client.download(files_url(file_id), destination, params={"alt": "media"})
            except DriveError:
                _discard_partial(destination)
                raise
            except OSError as exc:
                _discard_partial(destination)
                raise StagingError(str(destination), exc.strerror or str(exc)) from exc
            logger.info("[fetch] downloaded; file_id:%s;path:%s", file_id, destination)

        return staging

    def download_matching(
        self, q: str, order_by: str = DEFAULT_ORDER_BY, staging: Path | None = None
    ) -> Path:
        """Download every file matching the filter expression ``q``.

        Returns:
            The staging directory (empty when nothing matched).
        """
        nodes = self._query.list_files(q, fields=DEFAULT_FIELDS, order_by=order_by)
        logger.info("[download_matching] matched; q:%s;count:%d", q, len(nodes))
        return self.fetch([node.id for node in nodes], [node.name or node.id for node in nodes], staging)
