"""Unit tests for drive/upload.py — resumable uploads and tree uploads."""

import json
from io import BytesIO
from pathlib import Path
from unittest.mock import MagicMock, call, patch
from urllib.error import HTTPError

import pytest

from gdrive_backup.drive.client import UPLOAD_BASE_URL, DriveClient
from gdrive_backup.drive.errors import (
    AuthError,
    BatchError,
    DeadlineExceeded,
    DriveApiError,
    QueryError,
    UploadSessionError,
    UploadTransferError,
)
from gdrive_backup.drive.models import CredentialSet
from gdrive_backup.drive.upload import FileUploader, TreeUploader, content_type_of

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SESSION_URI = f"{UPLOAD_BASE_URL}/files?uploadType=resumable&upload_id=ADPycdt-session"


def _make_client() -> DriveClient:
    client = DriveClient(timeout=10.0)
    client.authorize(CredentialSet(access_token="ya29.token", token_type="Bearer"))
    return client


def _response(status: int = 200, headers: dict | None = None, body: bytes = b"") -> MagicMock:
    mock_response = MagicMock()
    mock_response.status = status
    mock_response.headers = headers or {}
    mock_response.read.return_value = body
    mock_response.__enter__ = lambda s: s
    mock_response.__exit__ = MagicMock(return_value=False)
    return mock_response


def _tree(root: Path) -> Path:
    """Create docs/a.txt, docs/sub/b.txt and docs/sub/c.txt under ``root``."""
    docs = root / "docs"
    (docs / "sub").mkdir(parents=True)
    (docs / "a.txt").write_text("a")
    (docs / "sub" / "b.txt").write_text("bb")
    (docs / "sub" / "c.txt").write_text("ccc")
    return docs


# ---------------------------------------------------------------------------
# FileUploader tests
# ---------------------------------------------------------------------------


class TestFileUploader:
    def test_session_uri_from_phase_one_is_target_of_phase_two(self, tmp_path: Path) -> None:
        local_file = tmp_path / "2024-06-01.full.bkp"
        local_file.write_bytes(b"archive-bytes")

        with patch("gdrive_backup.drive.client.urllib_request.urlopen") as mock_urlopen:
            mock_urlopen.side_effect = [
                _response(headers={"Location": _SESSION_URI}),
                _response(body=b'{"id": "file-1"}'),
            ]
            FileUploader(_make_client()).upload(local_file, "host-id")

        initiate, transfer = (c[0][0] for c in mock_urlopen.call_args_list)
        assert initiate.get_method() == "POST"
        assert initiate.full_url == f"{UPLOAD_BASE_URL}/files?uploadType=resumable"
        assert json.loads(initiate.data) == {
            "mimeType": "application/octet-stream",
            "name": "2024-06-01.full.bkp",
            "parents": ["host-id"],
        }
        assert initiate.get_header("X-upload-content-length") == "13"
        assert initiate.get_header("X-upload-content-type") == "application/octet-stream"

        assert transfer.get_method() == "PUT"
        assert transfer.full_url == _SESSION_URI
        assert transfer.get_header("Content-length") == "13"
        assert transfer.get_header("Authorization") == "Bearer ya29.token"

    def test_missing_location_is_session_error(self, tmp_path: Path) -> None:
        local_file = tmp_path / "a.bkp"
        local_file.write_bytes(b"x")

        with (
            patch(
                "gdrive_backup.drive.client.urllib_request.urlopen",
                return_value=_response(headers={}),
            ) as mock_urlopen,
            pytest.raises(UploadSessionError) as exc_info,
        ):
            FileUploader(_make_client()).upload(local_file, "host-id")

        assert exc_info.value.path == str(local_file)
        mock_urlopen.assert_called_once()

    def test_rejected_initiation_is_session_error(self, tmp_path: Path) -> None:
        local_file = tmp_path / "a.bkp"
        local_file.write_bytes(b"x")
        uploader = FileUploader(MagicMock())
        uploader._client.post_json.side_effect = DriveApiError(403, "storageQuotaExceeded")

        with pytest.raises(UploadSessionError, match="storageQuotaExceeded"):
            uploader.initiate(local_file, "host-id")

    def test_unreadable_file_is_session_error(self, tmp_path: Path) -> None:
        with pytest.raises(UploadSessionError):
            FileUploader(MagicMock()).initiate(tmp_path / "gone.bkp", "host-id")

    def test_failed_transfer_is_transfer_error(self, tmp_path: Path) -> None:
        local_file = tmp_path / "a.bkp"
        local_file.write_bytes(b"x")
        http_error = HTTPError(
            url=_SESSION_URI,
            code=503,
            msg="Service Unavailable",
            hdrs=MagicMock(),  # type: ignore[arg-type]
            fp=BytesIO(b""),
        )

        with (
            patch("gdrive_backup.drive.client.urllib_request.urlopen") as mock_urlopen,
            pytest.raises(UploadTransferError),
        ):
            mock_urlopen.side_effect = [_response(headers={"location": _SESSION_URI}), http_error]
            FileUploader(_make_client()).upload(local_file, "host-id")

    def test_content_type_is_guessed_from_name(self) -> None:
        assert content_type_of(Path("notes.txt")) == "text/plain"
        assert content_type_of(Path("archive.full.bkp")) == "application/octet-stream"

    def test_compressed_files_are_typed_by_compression(self) -> None:
        assert content_type_of(Path("db.tar.gz")) == "application/gzip"
        assert content_type_of(Path("dump.sql.xz")) == "application/x-xz"
        assert content_type_of(Path("logs.tar.bz2")) == "application/x-bzip2"


# ---------------------------------------------------------------------------
# TreeUploader tests
# ---------------------------------------------------------------------------


def _tree_uploader() -> tuple[TreeUploader, MagicMock, MagicMock]:
    uploader = MagicMock()
    resolver = MagicMock()
    resolver.resolve_path.side_effect = lambda parts, root_id: f"{root_id}:" + "/".join(parts)
    return TreeUploader(uploader, resolver, max_workers=2), uploader, resolver


class TestTreeUploader:
    def test_mirrors_directory_structure(self, tmp_path: Path) -> None:
        docs = _tree(tmp_path).resolve()
        tree, uploader, resolver = _tree_uploader()

        uploaded = tree.upload_tree(docs, "host-id")

        assert uploaded == 3
        assert resolver.resolve_path.call_args_list == [
            call(("docs",), "host-id"),
            call(("docs", "sub"), "host-id"),
        ]
        assert uploader.upload.call_count == 3
        uploader.upload.assert_has_calls(
            [
                call(docs / "a.txt", "host-id:docs"),
                call(docs / "sub" / "b.txt", "host-id:docs/sub"),
                call(docs / "sub" / "c.txt", "host-id:docs/sub"),
            ],
            any_order=True,
        )

    def test_single_file_bypasses_walk(self, tmp_path: Path) -> None:
        local_file = tmp_path / "db.full.bkp"
        local_file.write_bytes(b"x")
        tree, uploader, resolver = _tree_uploader()

        assert tree.upload_tree(local_file, "host-id") == 1

        uploader.upload.assert_called_once_with(local_file, "host-id")
        resolver.resolve_path.assert_not_called()

    def test_failed_upload_does_not_stop_siblings(self, tmp_path: Path) -> None:
        docs = _tree(tmp_path).resolve()
        tree, uploader, _ = _tree_uploader()

        def upload(local_file: Path, folder_id: str) -> None:
            if local_file.name == "b.txt":
                raise UploadTransferError(str(local_file), "unexpected status 500")

        uploader.upload.side_effect = upload

        with pytest.raises(BatchError) as exc_info:
            tree.upload_tree(docs, "host-id")

        assert uploader.upload.call_count == 3
        assert exc_info.value.operation == "upload_tree"
        assert [item for item, _ in exc_info.value.failures] == [str(docs / "sub" / "b.txt")]

    def test_failed_resolution_fails_that_directory_only(self, tmp_path: Path) -> None:
        docs = _tree(tmp_path).resolve()
        tree, uploader, resolver = _tree_uploader()

        def resolve_path(parts: tuple, root_id: str) -> str:
            if parts == ("docs", "sub"):
                raise QueryError("Listing rejected")
            return "docs-id"

        resolver.resolve_path.side_effect = resolve_path

        with pytest.raises(BatchError) as exc_info:
            tree.upload_tree(docs, "host-id")

        uploader.upload.assert_called_once_with(docs / "a.txt", "docs-id")
        assert sorted(item for item, _ in exc_info.value.failures) == [
            str(docs / "sub" / "b.txt"),
            str(docs / "sub" / "c.txt"),
        ]

    def test_deadline_during_uploads_ends_the_run(self, tmp_path: Path) -> None:
        docs = _tree(tmp_path).resolve()
        tree, uploader, _ = _tree_uploader()
        uploader.upload.side_effect = DeadlineExceeded("Run deadline of 30s exceeded")

        with pytest.raises(DeadlineExceeded, match="Run deadline"):
            tree.upload_tree(docs, "host-id")

    def test_deadline_during_resolution_ends_the_run(self, tmp_path: Path) -> None:
        docs = _tree(tmp_path).resolve()
        tree, uploader, resolver = _tree_uploader()
        resolver.resolve_path.side_effect = DeadlineExceeded("Run deadline of 30s exceeded")

        with pytest.raises(DeadlineExceeded):
            tree.upload_tree(docs, "host-id")

        uploader.upload.assert_not_called()

    def test_lost_credential_is_not_batched(self, tmp_path: Path) -> None:
        docs = _tree(tmp_path).resolve()
        tree, uploader, _ = _tree_uploader()

        def upload(local_file: Path, folder_id: str) -> None:
            if local_file.name == "a.txt":
                raise AuthError("Cannot resolve access token and/or token type")
            raise UploadTransferError(str(local_file), "unexpected status 500")

        uploader.upload.side_effect = upload

        with pytest.raises(AuthError):
            tree.upload_tree(docs, "host-id")
