"""Exception hierarchy for Google Drive operations."""

from __future__ import annotations


class DriveError(Exception):
    """Base class for every error raised by the drive layer."""


class DriveApiError(DriveError):
    """Raised when the Drive API returns a non-2xx response or cannot be reached."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Drive API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class AuthError(DriveError):
    """Raised when credentials cannot be obtained, exchanged or refreshed."""


class QueryError(DriveError):
    """Raised when a file listing is rejected or returns a malformed payload."""


class TransferError(DriveError):
    """Base class for upload failures."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class UploadSessionError(TransferError):
    """Raised when phase one of a resumable upload yields no session URI."""


class UploadTransferError(TransferError):
    """Raised when phase two of a resumable upload does not succeed."""


class NotFoundError(DriveError):
    """Raised when an expected remote folder or file set is absent."""


class NoFullBackupError(NotFoundError):
    """Raised when no full-backup marker exists among the candidate files."""


class DeadlineExceeded(DriveError):
    """Raised when a run deadline elapsed or was cancelled before a network call."""


class BatchError(DriveError):
    """Raised at the end of a bulk operation in which some items failed.

    Attributes:
        operation: Short name of the bulk operation (e.g. "upload_tree").
        failures: (item, exception) pairs for every failed item, in completion order.
    """

    def __init__(self, operation: str, failures: list[tuple[str, Exception]]) -> None:
        super().__init__(f"{operation}: {len(failures)} item(s) failed")
        self.operation = operation
        self.failures = failures


class StagingError(DriveError):
    """Raised when a download cannot be written to the local staging directory."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message
