"""Stream chunker - slices a sequential byte source into numbered parts."""
import asyncio
import logging
from typing import AsyncIterator

from ..errors import PartLimitExceededError, SourceReadError
from ..models import Part
from ..protocols import IByteSource

logger = logging.getLogger(__name__)


class StreamChunker:
    """
    Lazy, finite, non-restartable sequence of Parts.

    Every part is exactly ``part_size`` bytes except the last one, which may
    be shorter. An empty stream still yields a single empty part so the
    object gets created.

    Usage:
        chunker = StreamChunker(sys.stdin.buffer, part_size=32 * MB)
        async for part in chunker:
            ...
    """

    def __init__(self, source: IByteSource, part_size: int, max_parts: int = 10000):
        if part_size <= 0:
            raise ValueError("part_size must be positive")
        self._source = source
        self._part_size = part_size
        self._max_parts = max_parts
        self._started = False
        self._eof = False
        self.parts_produced = 0
        self.bytes_read = 0

    @property
    def part_size(self) -> int:
        return self._part_size

    @property
    def exhausted(self) -> bool:
        return self._eof

    def __aiter__(self) -> AsyncIterator[Part]:
        return self.parts()

    async def parts(self) -> AsyncIterator[Part]:
        """Yield parts numbered 1..N in input order."""
        if self._started:
            raise RuntimeError("StreamChunker can only be iterated once")
        self._started = True

        while not self._eof:
            buffer = await self._fill(self._part_size)
            if not buffer and self.parts_produced > 0:
                break

            number = self.parts_produced + 1
            if number >= self._max_parts and not self._eof:
                # S3 caps the part count; peek one byte past the last allowed part
                if await self._fill(1):
                    raise PartLimitExceededError(
                        f"input exceeds {self._max_parts} parts of {self._part_size} bytes"
                    )

            self.parts_produced = number
            logger.debug(f"Chunked part {number} ({len(buffer)} bytes)")
            yield Part(number=number, payload=buffer)
            buffer = b""

        logger.debug(f"Chunker exhausted: {self.parts_produced} parts, {self.bytes_read} bytes")

    async def _fill(self, size: int) -> bytes:
        """Read until ``size`` bytes are collected or the stream ends."""
        chunks = []
        remaining = size
        while remaining > 0 and not self._eof:
            try:
                data = await asyncio.to_thread(self._source.read, remaining)
            except (OSError, ValueError) as exc:
                raise SourceReadError(f"failed to read input: {exc}") from exc
            if not data:
                self._eof = True
                break
            chunks.append(data)
            remaining -= len(data)
            self.bytes_read += len(data)
        return b"".join(chunks)
