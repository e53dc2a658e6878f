"""Integration tests for Google Drive connectivity.

These tests require a real credential store holding a client id, secret and
refresh token, and are skipped unless GDB_INTEGRATION_CONFIG points at it.
"""

import os
from pathlib import Path

import pytest

pytestmark = pytest.mark.skipif(
    not os.getenv("GDB_INTEGRATION_CONFIG"),
    reason="Real Drive credentials not available",
)


def _config():
    from gdrive_backup.config import AppConfig

    return AppConfig(
        credential_file=Path(os.environ["GDB_INTEGRATION_CONFIG"]).expanduser(),
        hostname=f"gdb-integration-{os.getpid()}",
        skip_delete_old=True,
        run_timeout=300.0,
    )


def test_backup_then_restore_round_trip(tmp_path: Path) -> None:
    """Upload a full backup to a throwaway host folder and restore it."""
    from gdrive_backup.orchestration.processor import backup_processor_from_config

    archive = tmp_path / "integration.full.bkp"
    archive.write_bytes(b"integration-payload")
    config = _config()

    report = backup_processor_from_config(config).run_backup([archive])
    assert report.uploaded == 1

    staged = backup_processor_from_config(config).run_restore(tmp_path / "restore")
    assert [p.name for p in staged] == ["integration.full.bkp"]
    assert staged[0].read_bytes() == b"integration-payload"
