from dataclasses import dataclass
from typing import Dict, List, Callable
import asyncio
import inspect
import logging
logger = logging.getLogger(__name__)

@dataclass
class UploadProgress:
    """Running totals for a streaming upload."""
    parts_completed: int = 0
    parts_failed: int = 0
    bytes_uploaded: int = 0
    retries: int = 0
    in_flight: int = 0
    state: str = "idle"  # idle, initiating, active, completing, done, aborting, aborted


class EventEmitter:
    """Simple event emitter for upload events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._listeners.get(event_name))

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners. Listener errors are logged, not raised."""
        if event_name not in self._listeners:
            return

        async with self._lock:
            for callback in self._listeners[event_name][:]:
                try:
                    if inspect.iscoroutinefunction(callback):
                        await callback(*args, **kwargs)
                    else:
                        callback(*args, **kwargs)
                except Exception as e:
                    logger.error(f"Error in event listener for {event_name}: {e}")
