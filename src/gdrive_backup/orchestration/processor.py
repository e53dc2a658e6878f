"""Backup processor — orchestrates backup and restore runs against Drive."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from gdrive_backup.drive.auth import Prompt, TokenManager
from gdrive_backup.drive.client import drive_client_from_config
from gdrive_backup.drive.download import FileDownloader, select_restore_window
from gdrive_backup.drive.errors import BatchError, DriveError, NotFoundError, TransferError
from gdrive_backup.drive.folders import FolderResolver
from gdrive_backup.drive.models import ROOT_FOLDER_ID, RemoteNode
from gdrive_backup.drive.query import FileQuery, files_in, folders_in
from gdrive_backup.drive.retention import RetentionPurger
from gdrive_backup.drive.store import CredentialStore
from gdrive_backup.drive.upload import FileUploader, TreeUploader

if TYPE_CHECKING:
    from gdrive_backup.config import AppConfig

logger = logging.getLogger(__name__)

DATE_FOLDER_FORMAT = "%Y-%m-%dT%H:%M:%S"


class MissingInputError(DriveError):
    """Raised when a local backup input does not exist or cannot be read."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Cannot read file or directory {path}")
        self.path = path


@dataclass
class BackupReport:
    """Outcome of a successful backup run."""

    folder_id: str
    uploaded: int = 0
    skipped: list[Path] = field(default_factory=list)
    purged: list[str] = field(default_factory=list)
    purge_skipped: bool = False


class BackupProcessor:
    """Runs whole backups and restores for one host.

    Remote layout: ``root / {backup_folder} / {hostname}`` holds the backup
    entries, optionally grouped into one folder per run when
    ``date_folders`` is set.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        query: FileQuery,
        resolver: FolderResolver,
        tree_uploader: TreeUploader,
        purger: RetentionPurger,
        downloader: FileDownloader,
        hostname: str,
        backup_folder: str = "Backup",
        keep_days: int = 10,
        skip_delete_old: bool = False,
        ignore_missing: bool = False,
        date_folders: bool = False,
        full_backup_suffix: str = ".full.bkp",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialise the backup processor.

        Args:
            token_manager: TokenManager authorizing the shared DriveClient.
            query: FileQuery for listing backup entries.
            resolver: FolderResolver for the backup folder chain.
            tree_uploader: TreeUploader for files and directories.
            purger: RetentionPurger for old backup entries.
            downloader: FileDownloader for restores.
            hostname: Name of the per-host folder.
            backup_folder: Name of the top-level backup folder under root.
            keep_days: Retention window in days.
            skip_delete_old: Never purge old entries.
            ignore_missing: Skip unreadable inputs instead of failing.
            date_folders: Upload each run into its own UTC timestamp folder.
            full_backup_suffix: Name suffix marking a full backup.
            clock: Returns the current UTC instant (injectable for tests).
        """
        self._tokens = token_manager
        self._query = query
        self._resolver = resolver
        self._tree = tree_uploader
        self._purger = purger
        self._downloader = downloader
        self._hostname = hostname
        self._backup_folder = backup_folder
        self._keep_days = keep_days
        self._skip_delete_old = skip_delete_old
        self._ignore_missing = ignore_missing
        self._date_folders = date_folders
        self._full_backup_suffix = full_backup_suffix
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def check_inputs(self, paths: Iterable[Path]) -> tuple[list[Path], list[Path]]:
        """Split ``paths`` into readable inputs and skipped ones.

        Raises:
            MissingInputError: If an input is unreadable and ``ignore_missing`` is off.
        """
        readable: list[Path] = []
        skipped: list[Path] = []
        for path in paths:
            if path.exists() and os.access(path, os.R_OK):
                readable.append(path)
            elif self._ignore_missing:
                logger.warning("[check_inputs] skipping unreadable input; path:%s", path)
                skipped.append(path)
            else:
                raise MissingInputError(path)
        return readable, skipped

    def run_backup(self, paths: Iterable[Path]) -> BackupReport:
        """Upload ``paths`` to the host folder, then purge expired entries.

        Steps:
            1. Check that every input is readable.
            2. Resolve the access token (no Drive call happens before this).
            3. Resolve ``root / backup_folder / hostname`` (and the run folder).
            4. Upload each input; every input is attempted.
            5. Unless disabled, purge host folder entries older than ``keep_days``.

        The purge only runs when every upload succeeded, so an incomplete
        backup never removes older complete ones.

        Returns:
            BackupReport for the run.

        Raises:
            MissingInputError: If an input is unreadable and ``ignore_missing`` is off.
            AuthError: If the access token cannot be resolved.
            BatchError: If any upload or deletion failed.
            DeadlineExceeded: If the run deadline elapsed; nothing is purged.
        """
        readable, skipped = self.check_inputs(paths)
        self._tokens.ensure_access_token()

        host_id = self._resolver.resolve_path([self._backup_folder, self._hostname], ROOT_FOLDER_ID)
        target_id = host_id
        if self._date_folders:
            run_name = self._clock().astimezone(timezone.utc).strftime(DATE_FOLDER_FORMAT)
            target_id = self._resolver.resolve(run_name, host_id)

        report = BackupReport(folder_id=target_id, skipped=skipped)
        failures: list[tuple[str, Exception]] = []
        for path in readable:
            try:
                report.uploaded += self._tree.upload_tree(path, target_id)
            except BatchError as exc:
                failures.extend(exc.failures)
            except TransferError as exc:
                failures.append((exc.path, exc))

        logger.info(
            "[run_backup] uploads finished; folder_id:%s;uploaded:%d;failed:%d",
            target_id,
            report.uploaded,
            len(failures),
        )
        if failures:
            logger.warning("[run_backup] purge skipped after failed uploads; failed:%d", len(failures))
            raise BatchError("backup", failures)

        if self._skip_delete_old:
            report.purge_skipped = True
        else:
            report.purged = self._purger.purge_older_than(host_id, self._keep_days)
        return report

    def run_restore(self, staging: Path | None = None) -> list[Path]:
        """Download the latest full backup and the entries that follow it.

        Folders are looked up, never created.

        Args:
            staging: Target directory; a new temporary directory when omitted.

        Returns:
            Paths of the staged files, in backup order.

        Raises:
            AuthError: If the access token cannot be resolved.
            NotFoundError: If the backup or host folder does not exist.
            NoFullBackupError: If no full backup is stored.
            DriveApiError: If a download fails.
            StagingError: If the staging directory cannot be written.
        """
        self._tokens.ensure_access_token()

        backup_id = self._resolver.find(self._backup_folder, ROOT_FOLDER_ID)
        if backup_id is None:
            raise NotFoundError(f"Folder {self._backup_folder} not found")
        host_id = self._resolver.find(self._hostname, backup_id)
        if host_id is None:
            raise NotFoundError(f"Folder {self._backup_folder}/{self._hostname} not found")

        window = select_restore_window(self._restore_candidates(host_id), self._full_backup_suffix)
        names = [node.name or node.id for node in window]
        directory = self._downloader.fetch([node.id for node in window], names, staging)
        staged = [directory / Path(name).name for name in names]
        logger.info("[run_restore] restore staged; directory:%s;file_count:%d", directory, len(staged))
        return staged

    def _restore_candidates(self, host_id: str) -> list[RemoteNode]:
        """List backup entries oldest first, across run folders when enabled."""
        if not self._date_folders:
            return self._query.list_files(files_in(host_id), follow_pages=True)
        nodes: list[RemoteNode] = []
        for run_folder in self._query.list_files(folders_in(host_id), follow_pages=True):
            nodes.extend(self._query.list_files(files_in(run_folder.id), follow_pages=True))
        return nodes


def backup_processor_from_config(config: AppConfig, prompt: Prompt | None = None) -> BackupProcessor:
    """Construct a BackupProcessor from application configuration.

    Creates one DriveClient for the run and wires every engine around it.

    Args:
        config: Application configuration instance.
        prompt: Callable asking the operator for a value; None when running
            non-interactively.

    Returns:
        Configured BackupProcessor instance.
    """
    client = drive_client_from_config(config)
    store = CredentialStore(config.credential_file)
    query = FileQuery(client)
    resolver = FolderResolver(client, query)
    return BackupProcessor(
        token_manager=TokenManager(client, store, prompt),
        query=query,
        resolver=resolver,
        tree_uploader=TreeUploader(FileUploader(client), resolver, config.max_workers),
        purger=RetentionPurger(client, query),
        downloader=FileDownloader(client, query),
        hostname=config.hostname,
        backup_folder=config.backup_folder,
        keep_days=config.keep_days,
        skip_delete_old=config.skip_delete_old,
        ignore_missing=config.ignore_missing,
        date_folders=config.date_folders,
        full_backup_suffix=config.full_backup_suffix,
    )
