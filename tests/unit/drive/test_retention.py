"""Unit tests for drive/retention.py — retention cutoff and purge."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from gdrive_backup.drive.client import files_url
from gdrive_backup.drive.errors import BatchError, DriveApiError, QueryError
from gdrive_backup.drive.models import RemoteNode
from gdrive_backup.drive.retention import RetentionPurger, expired, retention_cutoff

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _node(file_id: str, age_days: float | None) -> RemoteNode:
    modified = None if age_days is None else _NOW - timedelta(days=age_days)
    return RemoteNode(id=file_id, name=f"{file_id}.bkp", modified_time=modified)


def _purger(nodes: list[RemoteNode]) -> tuple[RetentionPurger, MagicMock, MagicMock]:
    client = MagicMock()
    query = MagicMock()
    query.list_files.return_value = nodes
    return RetentionPurger(client, query, clock=lambda: _NOW), client, query


# ---------------------------------------------------------------------------
# Cutoff tests
# ---------------------------------------------------------------------------


class TestCutoff:
    def test_cutoff_is_now_minus_days(self) -> None:
        assert retention_cutoff(_NOW, 10) == datetime(2024, 5, 22, 12, 0, tzinfo=timezone.utc)

    def test_boundary_is_strict(self) -> None:
        nodes = [_node("t-11", 11), _node("t-10", 10), _node("t-9", 9)]
        assert [n.id for n in expired(nodes, retention_cutoff(_NOW, 10))] == ["t-11"]

    def test_nodes_without_timestamp_are_trusted(self) -> None:
        assert [n.id for n in expired([_node("x", None)], _NOW)] == ["x"]


# ---------------------------------------------------------------------------
# purge_older_than tests
# ---------------------------------------------------------------------------


class TestPurgeOlderThan:
    def test_deletes_only_entries_past_the_window(self) -> None:
        purger, client, query = _purger([_node("t-11", 11), _node("t-10", 10), _node("t-9", 9)])

        deleted = purger.purge_older_than("host-id", 10)

        assert deleted == ["t-11"]
        client.delete.assert_called_once_with(files_url("t-11"))
        q = query.list_files.call_args[0][0]
        assert q == "'host-id' in parents and modifiedTime < '2024-05-22T12:00:00.000Z'"
        assert query.list_files.call_args.kwargs["fields"] == "id,name,modifiedTime"

    def test_nothing_to_delete(self) -> None:
        purger, client, _ = _purger([])
        assert purger.purge_older_than("host-id", 10) == []
        client.delete.assert_not_called()

    def test_failed_delete_does_not_stop_the_rest(self) -> None:
        purger, client, _ = _purger([_node("a", 20), _node("b", 15), _node("c", 12)])
        client.delete.side_effect = [None, DriveApiError(404, "File not found"), None]

        with pytest.raises(BatchError) as exc_info:
            purger.purge_older_than("host-id", 10)

        assert client.delete.call_count == 3
        assert exc_info.value.operation == "purge"
        assert [item for item, _ in exc_info.value.failures] == ["b.bkp"]

    def test_listing_failure_propagates(self) -> None:
        purger, client, query = _purger([])
        query.list_files.side_effect = QueryError("Listing rejected")

        with pytest.raises(QueryError):
            purger.purge_older_than("host-id", 10)
        client.delete.assert_not_called()
