"""
Protocols (Interfaces) for Dependency Inversion.

The upload core only talks to these small interfaces; the S3 transport and
the stdin/file source are plugged in from outside.
"""
from typing import Protocol, runtime_checkable

from .models import Destination, Manifest


@runtime_checkable
class ITransport(Protocol):
    """
    Interface for multipart upload calls.

    Implementations raise TransientTransportError for retryable failures and
    RequestRejectedError for everything that must not be retried.
    """

    async def initiate(self, destination: Destination) -> str:
        """Start a multipart upload and return its upload id."""
        ...

    async def upload_part(self, upload_id: str, part_number: int, payload: bytes) -> str:
        """Upload one part and return its content identifier (ETag)."""
        ...

    async def complete(self, upload_id: str, manifest: Manifest) -> str:
        """Finish the upload and return the object location."""
        ...

    async def abort(self, upload_id: str) -> None:
        """Abort the upload; safe to call after partial completion."""
        ...


@runtime_checkable
class IByteSource(Protocol):
    """Sequential, possibly blocking byte source. ``b""`` means end of stream."""

    def read(self, size: int) -> bytes:
        ...
