"""Shared fakes for s3up tests."""
import asyncio
import io
import time
from typing import Callable, Dict, List, Optional

import pytest

from s3up.errors import TransientTransportError
from s3up.models import Destination, MB, UploadConfig


class FakeTransport:
    """
    In-memory ITransport.

    ``failures`` maps part number -> list of exceptions raised on successive
    attempts (an exception class or instance; the last entry repeats when
    ``repeat_last`` is True).
    """

    def __init__(
        self,
        failures: Optional[Dict[int, list]] = None,
        repeat_last: bool = False,
        delay: Optional[Callable[[int], float]] = None,
        initiate_error: Optional[BaseException] = None,
        complete_error: Optional[BaseException] = None,
        abort_error: Optional[BaseException] = None,
        block: Optional[asyncio.Event] = None,
    ):
        self._failures = {k: list(v) for k, v in (failures or {}).items()}
        self._repeat_last = repeat_last
        self._delay = delay
        self._block = block
        self.initiate_error = initiate_error
        self.complete_error = complete_error
        self.abort_error = abort_error

        self.initiate_calls: List[Destination] = []
        self.upload_calls: List[int] = []
        self.complete_calls: List[list] = []
        self.abort_calls: List[str] = []
        self.stored: Dict[int, bytes] = {}
        self.in_flight = 0
        self.peak_in_flight = 0
        self.in_flight_bytes = 0
        self.peak_in_flight_bytes = 0

    async def initiate(self, destination: Destination) -> str:
        self.initiate_calls.append(destination)
        if self.initiate_error is not None:
            raise self.initiate_error
        return "upload-1"

    async def upload_part(self, upload_id: str, part_number: int, payload: bytes) -> str:
        self.upload_calls.append(part_number)
        self.in_flight += 1
        self.in_flight_bytes += len(payload)
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        self.peak_in_flight_bytes = max(self.peak_in_flight_bytes, self.in_flight_bytes)
        try:
            if self._block is not None:
                await self._block.wait()
            await asyncio.sleep(self._delay(part_number) if self._delay else 0)
            pending = self._failures.get(part_number)
            if pending:
                error = pending[0] if (self._repeat_last and len(pending) == 1) else pending.pop(0)
                raise error
            self.stored[part_number] = payload
            return f'"etag-{part_number}"'
        finally:
            self.in_flight -= 1
            self.in_flight_bytes -= len(payload)

    async def complete(self, upload_id: str, manifest) -> str:
        self.complete_calls.append(list(manifest))
        if self.complete_error is not None:
            raise self.complete_error
        return "https://bucket.s3.amazonaws.com/key"

    async def abort(self, upload_id: str) -> None:
        self.abort_calls.append(upload_id)
        if self.abort_error is not None:
            raise self.abort_error

    def reassemble(self) -> bytes:
        return b"".join(self.stored[number] for number in sorted(self.stored))


class GeneratedSource:
    """Arbitrarily large deterministic source that never holds the whole stream."""

    def __init__(self, total: int, max_read: Optional[int] = None):
        self.total = total
        self.position = 0
        self._max_read = max_read

    def read(self, size: int) -> bytes:
        if self._max_read is not None:
            size = min(size, self._max_read)
        size = min(size, self.total - self.position)
        if size <= 0:
            return b""
        start = self.position
        self.position += size
        return bytes((start + i) % 251 for i in range(size))


class SlowSource(GeneratedSource):
    """GeneratedSource whose reads after the first one block for ``delay`` seconds."""

    def __init__(self, total: int, delay: float):
        super().__init__(total)
        self._delay = delay
        self.reads = 0

    def read(self, size: int) -> bytes:
        self.reads += 1
        if self.reads > 1:
            time.sleep(self._delay)
        return super().read(size)


class FailingSource:
    """Returns ``good_bytes`` bytes, then raises OSError."""

    def __init__(self, good_bytes: int):
        self._data = io.BytesIO(b"x" * good_bytes)

    def read(self, size: int) -> bytes:
        data = self._data.read(size)
        if not data:
            raise OSError("Broken pipe")
        return data


def transient(message: str = "connection reset") -> TransientTransportError:
    return TransientTransportError(message)


@pytest.fixture
def destination() -> Destination:
    return Destination("bucket", "backups/archive.tar.zst")


@pytest.fixture
def small_config() -> UploadConfig:
    return UploadConfig(
        part_size=16,
        min_part_size=1,
        concurrency=4,
        max_attempts=3,
        backoff_initial=0.0,
        backoff_max=0.0,
    )


@pytest.fixture
def mib_config() -> UploadConfig:
    return UploadConfig(
        part_size=1 * MB,
        min_part_size=1 * MB,
        concurrency=4,
        max_attempts=3,
        backoff_initial=0.0,
        backoff_max=0.0,
    )
