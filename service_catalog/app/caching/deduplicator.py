"""
Request deduplication for concurrent upstream fetches.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Tuple, TypeVar

from shared.logging import get_logger

T = TypeVar("T")


class RequestDeduplicator:
    """Collapse concurrent requests for the same key into one upstream call.

    The in-flight table maps each key to the ``asyncio.Task`` running its
    producer. ``claim`` creates and registers that task without awaiting, so
    no other coroutine can run between the miss and the registration. The
    registration is dropped as soon as the producer settles.
    """

    def __init__(self):
        self.logger = get_logger("catalog.deduplicator")
        self._in_flight: Dict[str, "asyncio.Task"] = {}

    def claim(self, key: str, producer: Callable[[], Awaitable[T]]) -> Tuple["asyncio.Task[T]", bool]:
        """Return ``(task, owner)`` for ``key``.

        ``owner`` is True when this call started the producer, False when it
        joined a task already in flight.
        """
        task = self._in_flight.get(key)
        if task is not None and not task.done():
            return task, False

        async def run() -> T:
            try:
                return await producer()
            finally:
                if self._in_flight.get(key) is task:
                    del self._in_flight[key]

        task = asyncio.ensure_future(run())
        task.add_done_callback(_consume_exception)
        self._in_flight[key] = task
        self.logger.debug("Registered in-flight request", key=key, in_flight=len(self._in_flight))
        return task, True

    async def deduplicate(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        """Await the shared result for ``key``, starting ``producer`` if nothing is in flight."""
        task, owner = self.claim(key, producer)
        if not owner:
            self.logger.debug("Joined in-flight request", key=key)
        # A cancelled caller must not cancel the call other waiters depend on.
        return await asyncio.shield(task)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def in_flight_keys(self) -> List[str]:
        return list(self._in_flight)

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def cancel(self, key: str) -> bool:
        """Cancel the in-flight task for ``key``; waiters receive ``CancelledError``."""
        task = self._in_flight.pop(key, None)
        if task is None:
            return False
        task.cancel()
        self.logger.info("Cancelled in-flight request", key=key)
        return True


def _consume_exception(task: "asyncio.Task") -> None:
    # Mark the exception retrieved so a task whose waiters were all cancelled
    # does not log "Task exception was never retrieved".
    if not task.cancelled():
        task.exception()
