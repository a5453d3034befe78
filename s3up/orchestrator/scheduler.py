"""
Upload Scheduler - dispatches parts to a bounded pool of concurrent uploads.

A slot is taken before the next part is pulled from the chunker and given
back when that part's upload finishes, so at most ``concurrency`` parts are
buffered at any time. Results are never applied here: every PartResult goes
to the session's event queue.
"""
import asyncio
import logging
from typing import AsyncIterator, Set

from ..errors import FatalUploadError, SourceReadError
from ..models import ChunkingFinished, Part, PartResult, SourceFailed
from ..protocols import ITransport
from ..services.retry import RetryPolicy

logger = logging.getLogger(__name__)


class UploadScheduler:
    """
    Consumes parts and uploads them with at most ``concurrency`` in flight.

    Usage:
        scheduler = UploadScheduler(transport, retry_policy, 8, events)
        await scheduler.run(upload_id, chunker.parts())
    """

    def __init__(
        self,
        transport: ITransport,
        retry_policy: RetryPolicy,
        concurrency: int,
        events: asyncio.Queue,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._transport = transport
        self._retry = retry_policy
        self._concurrency = concurrency
        self._events = events
        self._slots = asyncio.Semaphore(concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self._stopped = False

        # Stats
        self.dispatched = 0
        self.buffered_bytes = 0
        self.peak_buffered_bytes = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Stop dispatching new parts. In-flight uploads are left to finish."""
        if not self._stopped:
            logger.debug("Scheduler stop requested")
        self._stopped = True

    async def run(self, upload_id: str, parts: AsyncIterator[Part]) -> None:
        """
        Dispatch every part, then wait for in-flight uploads to drain.

        Always puts exactly one ChunkingFinished or SourceFailed event on the
        queue, carrying the number of dispatched parts.
        """
        iterator = parts.__aiter__()
        last_number = 0
        try:
            while True:
                await self._slots.acquire()
                if self._stopped:
                    self._slots.release()
                    logger.debug(f"Dispatch stopped after {self.dispatched} parts")
                    self._events.put_nowait(ChunkingFinished(last_number, self.dispatched))
                    break
                try:
                    part = await iterator.__anext__()
                except StopAsyncIteration:
                    self._slots.release()
                    self._events.put_nowait(ChunkingFinished(last_number, self.dispatched))
                    break
                except FatalUploadError as exc:
                    self._slots.release()
                    logger.error(f"Input failed after {self.dispatched} parts: {exc}")
                    self._events.put_nowait(SourceFailed(exc, self.dispatched))
                    break
                except Exception as exc:
                    self._slots.release()
                    logger.error(f"Unexpected chunker error: {exc}", exc_info=True)
                    self._events.put_nowait(
                        SourceFailed(SourceReadError(f"{type(exc).__name__}: {exc}"), self.dispatched)
                    )
                    break

                if self._stopped:
                    # stop() arrived while this part was being read
                    self._slots.release()
                    part = None
                    logger.debug(f"Dispatch stopped after {self.dispatched} parts")
                    self._events.put_nowait(ChunkingFinished(last_number, self.dispatched))
                    break

                last_number = part.number
                self._dispatch(upload_id, part)
                # only the upload task may keep the payload alive
                part = None
        except asyncio.CancelledError:
            for task in self._tasks:
                task.cancel()
            raise
        finally:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _dispatch(self, upload_id: str, part: Part) -> None:
        self.dispatched += 1
        self.buffered_bytes += part.size
        self.peak_buffered_bytes = max(self.peak_buffered_bytes, self.buffered_bytes)
        task = asyncio.create_task(self._upload(upload_id, part))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Dispatched part {part.number} ({part.size} bytes, {len(self._tasks)} in flight)")

    async def _upload(self, upload_id: str, part: Part) -> None:
        """Upload one part and report its result. Never raises."""
        number, size = part.number, part.size
        try:
            etag, attempts = await self._retry.call_with_attempts(
                f"upload_part {number}",
                self._transport.upload_part,
                upload_id,
                number,
                part.payload,
            )
            result = PartResult.ok(number, etag, size=size, attempts=attempts)
        except FatalUploadError as exc:
            result = PartResult.fail(number, exc, size=size, attempts=getattr(exc, "attempts", 1))
        except Exception as exc:
            logger.error(f"Unexpected error uploading part {number}: {exc}", exc_info=True)
            result = PartResult.fail(number, exc, size=size)
        finally:
            self.buffered_bytes -= size
            self._slots.release()
        self._events.put_nowait(result)
