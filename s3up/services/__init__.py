"""Services for s3up."""
from .retry import BackoffSchedule, RetryPolicy
from .s3_transport import S3Transport

__all__ = [
    "BackoffSchedule",
    "RetryPolicy",
    "S3Transport",
]
