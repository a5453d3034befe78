"""
Error taxonomy for streaming uploads.

Transient errors are retried by the RetryPolicy. Every other UploadError is
fatal and sends the session down the abort path.
"""
from typing import Optional


class UploadError(Exception):
    """Base class for all upload failures."""


class TransientTransportError(UploadError):
    """Retryable: timeouts, connection resets, 5xx-class responses."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FatalUploadError(UploadError):
    """Base for errors that must not be retried."""


class RequestRejectedError(FatalUploadError):
    """Backend refused the request (credentials, malformed request, quota)."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class RetriesExhaustedError(FatalUploadError):
    """A retryable operation kept failing until the attempt budget ran out."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class SourceReadError(FatalUploadError):
    """The input stream itself failed."""


class PartLimitExceededError(FatalUploadError):
    """Input is larger than max_parts * part_size."""


class ManifestInconsistencyError(FatalUploadError):
    """Internal error: the collected part results have a gap or a duplicate."""


class CleanupFailureError(FatalUploadError):
    """Abort call failed after a primary failure; remote parts may be orphaned."""

    def __init__(self, upload_id: str, cause: BaseException):
        super().__init__(f"could not abort multipart upload {upload_id}: {cause}")
        self.upload_id = upload_id
        self.cause = cause


class ConfigurationError(ValueError):
    """Invalid upload configuration."""


class DestinationError(ConfigurationError):
    """Destination URI could not be parsed."""
