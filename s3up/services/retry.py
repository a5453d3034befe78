"""
Retry Policy - Single Responsibility: run one remote call with bounded retries.

Only TransientTransportError (and timeouts) are retried. Anything else is
fatal and surfaces immediately.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, TypeVar

from ..errors import (
    FatalUploadError,
    RequestRejectedError,
    RetriesExhaustedError,
    TransientTransportError,
    UploadError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE = (TransientTransportError, asyncio.TimeoutError)


@dataclass(frozen=True)
class BackoffSchedule:
    """Exponential backoff: initial * multiplier ** (attempt - 1), capped at maximum."""
    initial: float = 1.0
    multiplier: float = 2.0
    maximum: float = 30.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.initial * (self.multiplier ** (attempt - 1)), self.maximum)


class RetryPolicy:
    """
    Wraps a single remote operation with retries.

    Usage:
        policy = RetryPolicy(max_attempts=5)
        upload_id = await policy.call("initiate", transport.initiate, destination)
    """

    def __init__(
        self,
        max_attempts: int = 5,
        backoff: BackoffSchedule = BackoffSchedule(),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._sleep = sleep

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        return isinstance(error, RETRYABLE)

    async def call(self, operation: str, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Run ``fn`` and return its result."""
        result, _ = await self.call_with_attempts(operation, fn, *args, **kwargs)
        return result

    async def call_with_attempts(
        self,
        operation: str,
        fn: Callable[..., Awaitable[T]],
        *args,
        **kwargs,
    ) -> Tuple[T, int]:
        """
        Run ``fn`` with retries.

        Returns:
            (result, attempts used)

        Raises:
            RetriesExhaustedError: transient failures used up every attempt
            FatalUploadError: the call failed with a non-retryable error
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn(*args, **kwargs), attempt
            except RETRYABLE as exc:
                if attempt >= self.max_attempts:
                    logger.error(f"{operation} failed after {attempt} attempts: {exc}")
                    raise RetriesExhaustedError(operation, attempt, exc) from exc
                delay = self.backoff.delay(attempt)
                logger.warning(
                    f"{operation} failed (attempt {attempt}/{self.max_attempts}): {exc}, "
                    f"retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
            except FatalUploadError:
                raise
            except UploadError as exc:
                raise RequestRejectedError(f"{operation}: {exc}") from exc
            except Exception as exc:
                logger.debug(f"{operation} raised unexpected {type(exc).__name__}", exc_info=True)
                raise RequestRejectedError(f"{operation}: {type(exc).__name__}: {exc}") from exc
        # max_attempts >= 1 makes this unreachable
        raise RuntimeError(f"{operation}: retry loop exited without a result")
