"""
Upload session - lifecycle controller of one multipart upload.

States:
    IDLE -> INITIATING -> ACTIVE -> COMPLETING -> DONE
    IDLE/INITIATING -> ABORTED                 (no upload id yet)
    ACTIVE/COMPLETING -> ABORTING -> ABORTED

Session state is only mutated here, by the single loop that consumes the
scheduler's event queue. Upload tasks never touch it directly.
"""
import asyncio
import logging
from typing import AsyncIterator, Callable, Dict, Optional, Union

from ..errors import (
    CleanupFailureError,
    FatalUploadError,
    ManifestInconsistencyError,
    SourceReadError,
)
from ..models import (
    ChunkingFinished,
    Destination,
    Part,
    PartResult,
    SessionState,
    SourceFailed,
    UploadConfig,
    UploadResult,
    build_manifest,
)
from ..protocols import IByteSource, ITransport
from ..services.retry import RetryPolicy
from ..utils.events import EventEmitter, UploadProgress
from .chunker import StreamChunker
from .scheduler import UploadScheduler

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    SessionState.IDLE: {SessionState.INITIATING, SessionState.ABORTED},
    SessionState.INITIATING: {SessionState.ACTIVE, SessionState.ABORTED},
    SessionState.ACTIVE: {SessionState.COMPLETING, SessionState.ABORTING},
    SessionState.COMPLETING: {SessionState.DONE, SessionState.ABORTING},
    SessionState.ABORTING: {SessionState.ABORTED},
    SessionState.DONE: set(),
    SessionState.ABORTED: set(),
}


async def _prepend(first: Part, rest: AsyncIterator[Part]) -> AsyncIterator[Part]:
    part, first = first, None
    yield part
    part = None
    while True:
        try:
            part = await rest.__anext__()
        except StopAsyncIteration:
            return
        yield part
        part = None


class UploadSession:
    """
    Drives one streaming multipart upload from first part to DONE or ABORTED.

    Usage:
        session = UploadSession(transport, destination, config)
        session.on_part_complete(lambda result: print(result.number))
        result = await session.run(sys.stdin.buffer)
    """

    def __init__(
        self,
        transport: ITransport,
        destination: Destination,
        config: Optional[UploadConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._transport = transport
        self._destination = destination
        self._config = config or UploadConfig()
        self._retry = retry_policy or self._config.retry_policy()
        self._events = EventEmitter()
        self._state = SessionState.IDLE
        self._upload_id: Optional[str] = None
        self._results: Dict[int, PartResult] = {}
        self._part_count = 0
        self._total_bytes = 0
        self._scheduler: Optional[UploadScheduler] = None
        self._complete_calls = 0
        self._abort_calls = 0
        self.progress = UploadProgress()

    # Event subscription methods
    def on_state_change(self, callback: Callable[[SessionState, SessionState], None]):
        """Called on every transition. Receives (old_state, new_state)."""
        self._events.on("state_change", callback)

    def on_part_complete(self, callback: Callable[[PartResult], None]):
        """Called when a part is uploaded. Receives PartResult."""
        self._events.on("part_complete", callback)

    def on_part_failed(self, callback: Callable[[PartResult], None]):
        """Called when a part fails for good. Receives PartResult."""
        self._events.on("part_failed", callback)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def upload_id(self) -> Optional[str]:
        return self._upload_id

    @property
    def destination(self) -> Destination:
        return self._destination

    @property
    def results(self) -> Dict[int, PartResult]:
        return dict(self._results)

    @property
    def scheduler(self) -> Optional[UploadScheduler]:
        return self._scheduler

    async def run(self, source: Union[IByteSource, StreamChunker]) -> UploadResult:
        """
        Upload everything ``source`` yields.

        Returns an UploadResult for every upload failure; only cancellation
        propagates (after a best-effort abort).
        """
        if self._state != SessionState.IDLE:
            raise RuntimeError(f"session already used (state={self._state.value})")

        if isinstance(source, StreamChunker):
            chunker = source
        else:
            chunker = StreamChunker(source, self._config.part_size, self._config.max_parts)

        try:
            return await self._run(chunker)
        except asyncio.CancelledError:
            if self._state == SessionState.ACTIVE and self._upload_id is not None:
                logger.warning(f"Upload interrupted, aborting multipart upload {self._upload_id}")
                await self._transition(SessionState.ABORTING)
                try:
                    await asyncio.shield(self._abort())
                finally:
                    await self._transition(SessionState.ABORTED)
            raise

    async def _run(self, chunker: StreamChunker) -> UploadResult:
        parts = chunker.parts()
        try:
            first = await parts.__anext__()
        except FatalUploadError as exc:
            logger.error(f"Could not read input: {exc}")
            await self._transition(SessionState.ABORTED)
            return UploadResult.fail(self._destination, exc)
        except Exception as exc:
            logger.error(f"Unexpected chunker error: {exc}", exc_info=True)
            await self._transition(SessionState.ABORTED)
            return UploadResult.fail(self._destination, SourceReadError(f"{type(exc).__name__}: {exc}"))

        await self._transition(SessionState.INITIATING)
        try:
            self._upload_id = await self._retry.call("initiate", self._transport.initiate, self._destination)
        except FatalUploadError as exc:
            logger.error(f"Could not start multipart upload for {self._destination}: {exc}")
            await self._transition(SessionState.ABORTED)
            return UploadResult.fail(self._destination, exc)
        logger.info(f"Started multipart upload {self._upload_id} for {self._destination}")

        await self._transition(SessionState.ACTIVE)
        all_parts = _prepend(first, parts)
        first = None
        error = await self._upload_parts(all_parts)

        if error is None:
            await self._transition(SessionState.COMPLETING)
            try:
                location = await self._complete()
            except FatalUploadError as exc:
                logger.error(f"Could not complete multipart upload {self._upload_id}: {exc}")
                error = exc
            else:
                await self._transition(SessionState.DONE)
                logger.info(
                    f"Uploaded {self._total_bytes} bytes in {self._part_count} parts to {location}"
                )
                return UploadResult.ok(
                    self._destination,
                    location=location,
                    upload_id=self._upload_id,
                    part_count=self._part_count,
                    total_bytes=self._total_bytes,
                )

        await self._transition(SessionState.ABORTING)
        cleanup_error = await self._abort()
        await self._transition(SessionState.ABORTED)
        return UploadResult.fail(
            self._destination,
            error,
            upload_id=self._upload_id,
            cleanup_error=cleanup_error,
            part_count=len(self._results),
            total_bytes=self._total_bytes,
        )

    async def _upload_parts(self, parts: AsyncIterator[Part]) -> Optional[BaseException]:
        """
        Run the scheduler and consume its events until every dispatched part
        has reported. Returns the first fatal error, or None.
        """
        queue: asyncio.Queue = asyncio.Queue()
        scheduler = UploadScheduler(self._transport, self._retry, self._config.concurrency, queue)
        self._scheduler = scheduler
        run_task = asyncio.create_task(scheduler.run(self._upload_id, parts))

        error: Optional[BaseException] = None
        expected: Optional[int] = None
        received = 0
        try:
            while expected is None or received < expected:
                event = await queue.get()
                if isinstance(event, PartResult):
                    received += 1
                    error = await self._on_part_result(event, error, scheduler)
                elif isinstance(event, ChunkingFinished):
                    expected = event.dispatched
                    self._part_count = event.part_count
                elif isinstance(event, SourceFailed):
                    expected = event.dispatched
                    if error is None:
                        error = event.error
                        scheduler.stop()
            await run_task
        finally:
            if not run_task.done():
                run_task.cancel()
        return error

    async def _on_part_result(
        self,
        result: PartResult,
        error: Optional[BaseException],
        scheduler: UploadScheduler,
    ) -> Optional[BaseException]:
        self.progress.in_flight = scheduler.in_flight
        self.progress.retries += max(result.attempts - 1, 0)

        if not result.success:
            self.progress.parts_failed += 1
            await self._events.emit("part_failed", result)
            if error is not None:
                logger.debug(f"Part {result.number} also failed: {result.error}")
                return error
            logger.error(f"Part {result.number} failed: {result.error}")
            scheduler.stop()
            return result.error

        if result.number in self._results:
            dup = ManifestInconsistencyError(f"part {result.number} reported twice")
            logger.error(str(dup))
            scheduler.stop()
            return error or dup

        self._results[result.number] = result
        self._total_bytes += result.size
        self.progress.parts_completed += 1
        self.progress.bytes_uploaded = self._total_bytes
        logger.debug(f"Part {result.number} uploaded (etag={result.etag}, attempts={result.attempts})")
        await self._events.emit("part_complete", result)
        return error

    async def _complete(self) -> str:
        self._require_state(SessionState.COMPLETING)
        manifest = build_manifest(self._results, self._part_count)
        self._complete_calls += 1
        return await self._retry.call("complete", self._transport.complete, self._upload_id, manifest)

    async def _abort(self) -> Optional[CleanupFailureError]:
        """Abort the remote upload once. Returns the cleanup failure, if any."""
        self._require_state(SessionState.ABORTING)
        if self._abort_calls:
            return None
        self._abort_calls += 1
        try:
            await self._retry.call("abort", self._transport.abort, self._upload_id)
        except FatalUploadError as exc:
            cleanup_error = CleanupFailureError(self._upload_id, exc)
            logger.error(f"{cleanup_error}; abort it manually to free storage")
            return cleanup_error
        logger.info(f"Aborted multipart upload {self._upload_id}")
        return None

    def _require_state(self, state: SessionState) -> None:
        if self._state != state:
            raise RuntimeError(f"expected state {state.value}, session is {self._state.value}")

    async def _transition(self, new_state: SessionState) -> None:
        old_state = self._state
        if new_state not in _TRANSITIONS[old_state]:
            raise RuntimeError(f"invalid transition {old_state.value} -> {new_state.value}")
        self._state = new_state
        self.progress.state = new_state.value
        logger.debug(f"Session {old_state.value} -> {new_state.value}")
        await self._events.emit("state_change", old_state, new_state)
