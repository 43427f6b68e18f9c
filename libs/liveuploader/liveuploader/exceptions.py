"""liveuploader exception hierarchy."""

from __future__ import annotations

from liveuploader.error_codes import ErrorCode


class UploaderError(Exception):
    """Base error for liveuploader."""

    error_code: ErrorCode | str = ErrorCode.UNKNOWN


class ConfigurationError(UploaderError):
    """Raised when configuration or inputs are invalid. Never retried."""

    def __init__(self, message: str, *, error_code: ErrorCode | str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code or ErrorCode.INVALID_CONFIG


class StorageError(UploaderError):
    """Raised when a storage backend call fails."""

    def __init__(
        self,
        uri: str,
        message: str,
        *,
        error_code: ErrorCode | str | None = None,
    ) -> None:
        super().__init__(f"{uri}: {message}")
        self.uri = uri
        self.message = message
        self.error_code = error_code or ErrorCode.STORAGE_WRITE_FAILED


class TransientStorageError(StorageError):
    """A single write/read attempt failed; eligible for retry."""


class FailoverError(TransientStorageError):
    """Both the primary and the backup write failed for one attempt."""

    def __init__(self, uri: str, primary: BaseException, backup: BaseException) -> None:
        super().__init__(
            uri,
            f"upload file errors: primary: {primary}; backup: {backup}",
            error_code=ErrorCode.FAILOVER_FAILED,
        )
        self.primary = primary
        self.backup = backup


class ExternalToolError(UploaderError):
    """Raised when an external executable fails or times out."""

    def __init__(
        self,
        tool: str,
        message: str,
        *,
        stdout: bytes = b"",
        stderr: bytes = b"",
        error_code: ErrorCode | str | None = None,
    ) -> None:
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.message = message
        self.stdout = stdout
        self.stderr = stderr
        self.error_code = error_code or ErrorCode.THUMBNAIL_FAILED


class InputStreamError(UploaderError):
    """Raised when reading the producer's input fails."""

    error_code = ErrorCode.INPUT_READ_FAILED


class UploadError(UploaderError):
    """Terminal error of one upload invocation."""

    def __init__(
        self,
        destination: str,
        message: str,
        *,
        bytes_written: int = 0,
        error_code: ErrorCode | str | None = None,
    ) -> None:
        super().__init__(f"{message} {destination}: ({bytes_written} bytes)")
        self.destination = destination
        self.message = message
        self.bytes_written = bytes_written
        self.error_code = error_code or ErrorCode.UPLOAD_FAILED

    def __str__(self) -> str:
        base = super().__str__()
        if self.__cause__ is not None:
            return f"{base} {self.__cause__}"
        return base
