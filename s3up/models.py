"""
Models for s3up.

Immutable dataclasses for parts, results and configuration, plus the events
passed from the scheduler to the upload session.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError, DestinationError, ManifestInconsistencyError

KB = 1024
MB = 1024 * KB
GB = 1024 * MB

# (part_number, etag) pairs sorted by part number
Manifest = List[Tuple[int, str]]


@dataclass(frozen=True)
class Destination:
    """Target bucket and key of the uploaded object."""
    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    @classmethod
    def parse(cls, value: str) -> "Destination":
        """Parse ``s3://bucket/key``."""
        if not value.startswith("s3://"):
            raise DestinationError("S3 path has to start with 's3://'")
        rest = value[len("s3://"):]
        if "/" not in rest:
            raise DestinationError("S3 path should be 's3://bucket/key'")
        bucket, key = rest.split("/", 1)
        if not bucket or not key:
            raise DestinationError("S3 path should be 's3://bucket/key'")
        return cls(bucket=bucket, key=key)

    def __str__(self) -> str:
        return self.uri


@dataclass(frozen=True)
class Part:
    """A numbered slice of the input stream."""
    number: int
    payload: bytes

    @property
    def size(self) -> int:
        return len(self.payload)


class PartOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class PartResult:
    """Outcome of uploading one part."""
    number: int
    outcome: PartOutcome
    etag: Optional[str] = None
    size: int = 0
    attempts: int = 1
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.outcome == PartOutcome.SUCCESS

    @classmethod
    def ok(cls, number: int, etag: str, size: int = 0, attempts: int = 1):
        return cls(number=number, outcome=PartOutcome.SUCCESS, etag=etag, size=size, attempts=attempts)

    @classmethod
    def fail(cls, number: int, error: BaseException, size: int = 0, attempts: int = 1):
        return cls(number=number, outcome=PartOutcome.FAILURE, error=error, size=size, attempts=attempts)


@dataclass(frozen=True)
class ChunkingFinished:
    """Chunker is exhausted; every part has been dispatched."""
    part_count: int
    dispatched: int


@dataclass(frozen=True)
class SourceFailed:
    """Chunker raised; no further parts will be dispatched."""
    error: BaseException
    dispatched: int


class SessionState(Enum):
    """State of a multipart upload session."""
    IDLE = "idle"
    INITIATING = "initiating"
    ACTIVE = "active"
    COMPLETING = "completing"
    DONE = "done"
    ABORTING = "aborting"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.DONE, SessionState.ABORTED)


def build_manifest(results: Dict[int, PartResult], part_count: int) -> Manifest:
    """
    Build the ordered manifest for the complete call.

    Raises:
        ManifestInconsistencyError: if parts 1..part_count are not all present
            exactly once with a content identifier.
    """
    if part_count < 1:
        raise ManifestInconsistencyError(f"invalid part count {part_count}")
    expected = set(range(1, part_count + 1))
    present = set(results)
    missing = sorted(expected - present)
    extra = sorted(present - expected)
    if missing or extra:
        raise ManifestInconsistencyError(
            f"manifest mismatch: missing parts {missing[:10]}, unexpected parts {extra[:10]}"
        )
    manifest: Manifest = []
    for number in sorted(results):
        result = results[number]
        if result.number != number or not result.success or result.etag is None:
            raise ManifestInconsistencyError(f"part {number} has no successful result")
        manifest.append((number, result.etag))
    return manifest


class UploadStatus(Enum):
    """Terminal status of an upload."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadResult:
    """Immutable terminal result of a streaming upload."""
    destination: Destination
    status: UploadStatus = UploadStatus.SUCCESS
    location: Optional[str] = None
    upload_id: Optional[str] = None
    part_count: int = 0
    total_bytes: int = 0
    error: Optional[BaseException] = None
    cleanup_error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.status == UploadStatus.SUCCESS

    @property
    def cleaned_up(self) -> bool:
        """False when remote state may still hold an orphaned multipart upload."""
        return self.cleanup_error is None

    @classmethod
    def ok(
        cls,
        destination: Destination,
        location: str,
        upload_id: str,
        part_count: int,
        total_bytes: int,
    ):
        return cls(
            destination=destination,
            status=UploadStatus.SUCCESS,
            location=location,
            upload_id=upload_id,
            part_count=part_count,
            total_bytes=total_bytes,
        )

    @classmethod
    def fail(
        cls,
        destination: Destination,
        error: BaseException,
        upload_id: Optional[str] = None,
        cleanup_error: Optional[BaseException] = None,
        part_count: int = 0,
        total_bytes: int = 0,
    ):
        return cls(
            destination=destination,
            status=UploadStatus.FAILED,
            upload_id=upload_id,
            part_count=part_count,
            total_bytes=total_bytes,
            error=error,
            cleanup_error=cleanup_error,
        )


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for streaming uploads."""
    part_size: int = 32 * MB
    concurrency: int = 8
    max_attempts: int = 5
    backoff_initial: float = 1.0
    backoff_multiplier: float = 2.0
    backoff_max: float = 30.0
    max_parts: int = 10000
    min_part_size: int = 5 * MB  # S3 lower bound for all but the last part
    max_part_size: int = 5 * GB
    request_timeout: float = 60.0

    def validate(self) -> "UploadConfig":
        """Check limits, returning self so it can be chained."""
        if self.part_size < self.min_part_size:
            raise ConfigurationError(
                f"Part size too small: {self.part_size} bytes, minimum is {self.min_part_size}"
            )
        if self.part_size > self.max_part_size:
            raise ConfigurationError(
                f"Part size too large: {self.part_size} bytes, maximum is {self.max_part_size}"
            )
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be at least 1")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.max_parts < 1:
            raise ConfigurationError("max_parts must be at least 1")
        if self.backoff_initial < 0 or self.backoff_max < 0 or self.backoff_multiplier < 1:
            raise ConfigurationError("invalid backoff schedule")
        return self

    @property
    def max_buffered_bytes(self) -> int:
        """Upper bound of payload held in memory at once."""
        return self.concurrency * self.part_size

    def retry_policy(self):
        """Build the RetryPolicy described by this config."""
        from .services.retry import BackoffSchedule, RetryPolicy

        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff=BackoffSchedule(
                initial=self.backoff_initial,
                multiplier=self.backoff_multiplier,
                maximum=self.backoff_max,
            ),
        )
