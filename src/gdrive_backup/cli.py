"""Command-line entry points for backup and restore runs."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from gdrive_backup import __version__
from gdrive_backup.config import load_config
from gdrive_backup.drive.errors import (
    AuthError,
    BatchError,
    DeadlineExceeded,
    DriveError,
    NoFullBackupError,
    NotFoundError,
)
from gdrive_backup.orchestration.processor import MissingInputError, backup_processor_from_config

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_AUTH = 2
EXIT_NOT_FOUND = 3
EXIT_NO_FULL_BACKUP = 4
EXIT_MISSING_INPUT = 5
EXIT_DEADLINE = 6

# Most specific first; NoFullBackupError is a NotFoundError.
_EXIT_CODES: list[tuple[type[DriveError], int]] = [
    (AuthError, EXIT_AUTH),
    (NoFullBackupError, EXIT_NO_FULL_BACKUP),
    (NotFoundError, EXIT_NOT_FOUND),
    (MissingInputError, EXIT_MISSING_INPUT),
    (DeadlineExceeded, EXIT_DEADLINE),
]


def exit_code_for(error: DriveError) -> int:
    """Map a drive-layer error to the process exit status."""
    for error_type, code in _EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return EXIT_FAILURE


def _prompt(message: str) -> str:
    return input(message)


def _run(action: Callable[[], int]) -> int:
    try:
        return action()
    except BatchError as exc:
        for item, error in exc.failures:
            print(f"{item}: {error}", file=sys.stderr)
        print(str(exc), file=sys.stderr)
        return EXIT_FAILURE
    except DriveError as exc:
        logger.debug("[_run] run failed", exc_info=True)
        print(str(exc), file=sys.stderr)
        return exit_code_for(exc)


def backup_main(argv: Sequence[str] | None = None) -> int:
    """Upload files and directories to the host backup folder."""
    parser = argparse.ArgumentParser(
        prog="gdrive-backup", description="Upload files and directories to Google Drive."
    )
    parser.add_argument("paths", nargs="+", type=Path, help="files or directories to upload")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    config = load_config()
    logging.basicConfig(level=config.log_level)

    def action() -> int:
        report = backup_processor_from_config(config, _prompt).run_backup(args.paths)
        logger.info(
            "[backup_main] backup complete; uploaded:%d;purged:%d",
            report.uploaded,
            len(report.purged),
        )
        return EXIT_OK

    return _run(action)


def restore_main(argv: Sequence[str] | None = None) -> int:
    """Download the latest full backup and its incrementals, printing the staged paths."""
    parser = argparse.ArgumentParser(
        prog="gdrive-restore", description="Download the latest backup set from Google Drive."
    )
    parser.add_argument(
        "--staging", type=Path, default=None, help="target directory (default: a new temp dir)"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    config = load_config()
    logging.basicConfig(level=config.log_level)

    def action() -> int:
        for path in backup_processor_from_config(config, _prompt).run_restore(args.staging):
            print(path)
        return EXIT_OK

    return _run(action)
