"""Upload engine — resumable uploads of single files and whole directory trees."""

from __future__ import annotations

import logging
import mimetypes
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import TYPE_CHECKING

from gdrive_backup.drive.client import UPLOAD_BASE_URL
from gdrive_backup.drive.errors import (
    AuthError,
    BatchError,
    DeadlineExceeded,
    DriveApiError,
    DriveError,
    UploadSessionError,
    UploadTransferError,
)
from gdrive_backup.drive.models import UploadSession

if TYPE_CHECKING:
    from gdrive_backup.drive.client import DriveClient
    from gdrive_backup.drive.folders import FolderResolver

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_MAX_WORKERS = 4
# Errors that end the whole run rather than a single file.
_RUN_FATAL = (DeadlineExceeded, AuthError)

# mimetypes reports compression as an encoding rather than a type.
_ENCODING_TYPES = {
    "gzip": "application/gzip",
    "bzip2": "application/x-bzip2",
    "xz": "application/x-xz",
    "compress": "application/x-compress",
    "br": "application/x-brotli",
}


def content_type_of(path: Path) -> str:
    """Guess the MIME type of a local file from its name.

    A compressed file (``.tar.gz``, ``.sql.xz``) is typed by its compression.
    """
    content_type, encoding = mimetypes.guess_type(path.name)
    if encoding is not None:
        return _ENCODING_TYPES.get(encoding, DEFAULT_CONTENT_TYPE)
    return content_type or DEFAULT_CONTENT_TYPE


class FileUploader:
    """Runs the two-phase resumable upload protocol for one file at a time.

    Phase one posts the file metadata and captures the session URI from the
    ``Location`` header; phase two streams the body to that URI. Sessions are
    never shared between files or persisted.
    """

    def __init__(self, client: DriveClient) -> None:
        self._client = client

    def initiate(self, local_file: Path, folder_id: str) -> UploadSession:
        """Open a resumable upload session for ``local_file`` inside ``folder_id``.

        Raises:
            UploadSessionError: If the file cannot be read, the request fails,
                or no ``Location`` header is returned.
        """
        content_type = content_type_of(local_file)
        try:
            size = local_file.stat().st_size
        except OSError as exc:
            raise UploadSessionError(str(local_file), exc.strerror or str(exc)) from exc

        try:
            response = self._client.post_json(
                f"{UPLOAD_BASE_URL}/files",
                {"mimeType": content_type, "name": local_file.name, "parents": [folder_id]},
                params={"uploadType": "resumable"},
                headers={
                    "X-Upload-Content-Type": content_type,
                    "X-Upload-Content-Length": str(size),
                },
            )
        except DriveApiError as exc:
            raise UploadSessionError(str(local_file), exc.message) from exc

        location = response.header("Location")
        if not location:
            raise UploadSessionError(str(local_file), "response carried no Location header")
        return UploadSession(uri=location, folder_id=folder_id, size=size, content_type=content_type)

    def transfer(self, session: UploadSession, local_file: Path) -> None:
        """Stream the whole file body to the session URI.

        Raises:
            UploadTransferError: If the file cannot be read or the transfer fails.
        """
        try:
            with local_file.open("rb") as stream:
                response = self._client.request(
                    "PUT",
                    session.uri,
                    data=stream,
                    headers={
                        "Content-Type": session.content_type,
                        "Content-Length": str(session.size),
                    },
                    with_api_key=False,
                )
        except DriveApiError as exc:
            raise UploadTransferError(str(local_file), exc.message) from exc
        except OSError as exc:
            raise UploadTransferError(str(local_file), exc.strerror or str(exc)) from exc

        if not 200 <= response.status < 300:
            raise UploadTransferError(str(local_file), f"unexpected status {response.status}")

    def upload(self, local_file: Path, folder_id: str) -> None:
        """Upload ``local_file`` into the Drive folder ``folder_id``.

        Raises:
            UploadSessionError: If phase one fails.
            UploadTransferError: If phase two fails.
        """
        session = self.initiate(local_file, folder_id)
        self.transfer(session, local_file)
        logger.info(
            "[upload] uploaded file; path:%s;folder_id:%s;bytes:%d",
            local_file,
            folder_id,
            session.size,
        )


class TreeUploader:
    """Uploads a local directory recursively, mirroring its folder structure.

    Folder resolution happens on the calling thread, in path order; each file
    upload then runs as its own task on a thread pool. All tasks are joined
    before returning, and every failure is reported together.
    """

    def __init__(
        self,
        uploader: FileUploader,
        resolver: FolderResolver,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        """Initialise the tree uploader.

        Args:
            uploader: FileUploader performing each single-file upload.
            resolver: FolderResolver shared by the run (its cache spans trees).
            max_workers: Maximum number of concurrent uploads.
        """
        self._uploader = uploader
        self._resolver = resolver
        self._max_workers = max_workers

    def upload_tree(self, local_root: Path, root_folder_id: str) -> int:
        """Upload a file, or every regular file under a directory, to Drive.

        Files keep their path relative to the parent of ``local_root``, so
        ``/data/docs/a/b.txt`` lands in ``docs/a/`` under ``root_folder_id``.
        A single file is uploaded directly into ``root_folder_id``.

        Args:
            local_root: Local file or directory.
            root_folder_id: Drive folder that receives the tree.

        Returns:
            Number of files uploaded.

        Raises:
            DeadlineExceeded: If the run deadline elapsed during the upload.
            AuthError: If a call was made without a resolved credential.
            BatchError: After all files were attempted, if any of them failed.
        """
        if local_root.is_file():
            self._uploader.upload(local_root, root_folder_id)
            return 1

        root = local_root.resolve()
        base = root.parent
        files = sorted(p for p in root.rglob("*") if p.is_file() and not p.is_symlink())

        failures: list[tuple[str, Exception]] = []
        futures: dict[Future[None], Path] = {}
        last_dir: Path | None = None
        folder_id = root_folder_id
        resolve_error: DriveError | None = None

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            for local_file in files:
                rel_dir = local_file.parent.relative_to(base)
                if rel_dir != last_dir:
                    last_dir = rel_dir
                    try:
                        folder_id = self._resolver.resolve_path(rel_dir.parts, root_folder_id)
                        resolve_error = None
                    except _RUN_FATAL:
                        raise
                    except DriveError as exc:
                        logger.error("[upload_tree] folder resolution failed; path:%s", rel_dir)
                        resolve_error = exc
                if resolve_error is not None:
                    failures.append((str(local_file), resolve_error))
                    continue
                futures[executor.submit(self._uploader.upload, local_file, folder_id)] = local_file

            uploaded = 0
            for future in as_completed(futures):
                local_file = futures[future]
                try:
                    future.result()
                except DriveError as exc:
                    logger.error("[upload_tree] upload failed; path:%s;error:%s", local_file, exc)
                    failures.append((str(local_file), exc))
                else:
                    uploaded += 1

        logger.info(
            "[upload_tree] tree upload complete; root:%s;uploaded:%d;failed:%d",
            root,
            uploaded,
            len(failures),
        )
        for _, error in failures:
            if isinstance(error, _RUN_FATAL):
                raise error
        if failures:
            raise BatchError("upload_tree", failures)
        return uploaded
