"""
s3up - Stream standard input into S3 with concurrent multipart uploads.

The stream is cut into fixed-size parts, parts are uploaded by a bounded
pool of concurrent tasks, and the multipart upload is completed (or aborted
on failure) by a single session controller. Memory stays bounded by
concurrency x part size no matter how long the stream is.

Usage:
    from s3up import StreamUploadOrchestrator, UploadConfig

    config = UploadConfig(part_size=64 * MB, concurrency=8)
    async with StreamUploadOrchestrator("s3://bucket/backup.tar.zst", config) as uploader:
        result = await uploader.upload(sys.stdin.buffer)

    if not result.success:
        print(result.error, "cleaned up:", result.cleaned_up)

Command line:
    tar c data | zstd | s3-up s3://bucket/backup.tar.zst --part-size 64MB -c 8
"""
from .orchestrator import StreamUploadOrchestrator, UploadSession, StreamChunker, UploadScheduler
from .models import (
    Destination,
    Part,
    PartResult,
    PartOutcome,
    SessionState,
    UploadConfig,
    UploadResult,
    UploadStatus,
    KB,
    MB,
    GB,
)
from .errors import (
    UploadError,
    TransientTransportError,
    FatalUploadError,
    RequestRejectedError,
    RetriesExhaustedError,
    SourceReadError,
    PartLimitExceededError,
    ManifestInconsistencyError,
    CleanupFailureError,
    ConfigurationError,
    DestinationError,
)
from .services import BackoffSchedule, RetryPolicy, S3Transport

__version__ = "0.1.0"
__all__ = [
    # Main
    "StreamUploadOrchestrator",
    "UploadSession",
    "StreamChunker",
    "UploadScheduler",
    # Models
    "Destination",
    "Part",
    "PartResult",
    "PartOutcome",
    "SessionState",
    "UploadConfig",
    "UploadResult",
    "UploadStatus",
    "KB",
    "MB",
    "GB",
    # Errors
    "UploadError",
    "TransientTransportError",
    "FatalUploadError",
    "RequestRejectedError",
    "RetriesExhaustedError",
    "SourceReadError",
    "PartLimitExceededError",
    "ManifestInconsistencyError",
    "CleanupFailureError",
    "ConfigurationError",
    "DestinationError",
    # Services
    "BackoffSchedule",
    "RetryPolicy",
    "S3Transport",
]
