"""Application configuration loaded from environment variables."""

import logging
import os
import socket
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class AppConfig:
    """Centralized application configuration.

    Every field has a default so a bare environment runs a backup of the
    current host with a ten-day retention window. Client identity and tokens
    are not configuration: they live in the credential store at
    ``credential_file``.
    """

    credential_file: Path
    hostname: str

    # Domain constants — defaults provided, overridable via env
    backup_folder: str = "Backup"
    keep_days: int = 10
    skip_delete_old: bool = False
    ignore_missing: bool = False
    date_folders: bool = False
    full_backup_suffix: str = ".full.bkp"
    max_workers: int = 4
    request_timeout: float = 60.0
    run_timeout: float | None = None
    log_level: str = "WARNING"


def _flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


def _default_hostname() -> str:
    """Return the machine hostname, asking cloud-init when it is only ``localhost``."""
    hostname = socket.gethostname()
    if hostname != "localhost":
        return hostname
    try:
        result = subprocess.run(
            ["cloud-init", "query", "ds.meta_data.public_hostname"],
            capture_output=True,
            text=True,
            check=True,
            timeout=10,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("[_default_hostname] cloud-init lookup failed; error:%s", exc)
        return hostname
    return result.stdout.strip() or hostname


def load_config() -> AppConfig:
    """Construct an AppConfig from environment variables.

    Optional environment variables (with defaults):
        GDB_CONFIG_FILE: Credential store path (default: ~/.gdrive-backup.cfg).
        GDB_HOSTNAME: Host folder name (default: the machine hostname, or the
            cloud-init public hostname when the machine reports localhost).
        GDB_BACKUP_FOLDER: Top-level backup folder name (default: Backup).
        GDB_KEEP_DAYS: Retention window in days (default: 10).
        GDB_SKIP_DELETE_OLD: Skip the retention purge (default: false).
        GDB_IGNORE_MISSING: Skip unreadable inputs instead of aborting (default: false).
        GDB_DATE_FOLDERS: Upload into a per-run UTC date folder (default: false).
        GDB_FULL_BACKUP_SUFFIX: Full-backup marker suffix (default: .full.bkp).
        GDB_MAX_WORKERS: Concurrent uploads (default: 4).
        GDB_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 60).
        GDB_RUN_TIMEOUT: Whole-run deadline in seconds (default: unset).
        GDB_LOG_LEVEL: Logging level name (default: WARNING).

    Returns:
        Configured AppConfig instance.

    Raises:
        ValueError: If a numeric variable cannot be parsed.
    """
    run_timeout = os.environ.get("GDB_RUN_TIMEOUT", "").strip()
    return AppConfig(
        credential_file=Path(
            os.environ.get("GDB_CONFIG_FILE", "~/.gdrive-backup.cfg")
        ).expanduser(),
        hostname=os.environ.get("GDB_HOSTNAME") or _default_hostname(),
        backup_folder=os.environ.get("GDB_BACKUP_FOLDER", "Backup"),
        keep_days=int(os.environ.get("GDB_KEEP_DAYS", "10")),
        skip_delete_old=_flag("GDB_SKIP_DELETE_OLD"),
        ignore_missing=_flag("GDB_IGNORE_MISSING"),
        date_folders=_flag("GDB_DATE_FOLDERS"),
        full_backup_suffix=os.environ.get("GDB_FULL_BACKUP_SUFFIX", ".full.bkp"),
        max_workers=int(os.environ.get("GDB_MAX_WORKERS", "4")),
        request_timeout=float(os.environ.get("GDB_REQUEST_TIMEOUT", "60")),
        run_timeout=float(run_timeout) if run_timeout else None,
        log_level=os.environ.get("GDB_LOG_LEVEL", "WARNING").upper(),
    )
