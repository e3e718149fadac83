# quickrank/core/cancellation.py
"""
Cooperative cancellation for one pipeline run.

A CancellationToken is a one-way ACTIVE -> CANCELLED flag bound to asyncio:
awaitables started through ``run()`` are wrapped in tasks that ``cancel()``
aborts, and ``sleep()`` wakes up as soon as the token flips. Between steps
the orchestrator calls ``raise_if_cancelled()`` before starting the next one.
"""

import asyncio
from typing import Awaitable, Set, TypeVar

from quickrank.core.exceptions import PipelineCancelled

T = TypeVar("T")


class CancellationToken:
    """
    One-way cancellation signal shared by every step of a pipeline run.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._tasks: Set[asyncio.Future] = set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """
        Flip the token and abort every in-flight call started through ``run()``.

        Returns:
            bool: True if this call flipped the token, False if it was already cancelled
        """
        if self._event.is_set():
            return False
        self._event.set()

        for task in list(self._tasks):
            task.cancel()
        return True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PipelineCancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` so that ``cancel()`` can abort it.

        Raises:
            PipelineCancelled: If the token is (or becomes) cancelled before the awaitable finishes
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise PipelineCancelled()

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self.cancelled:
                raise PipelineCancelled()
            raise
        finally:
            self._tasks.discard(task)

    async def sleep(self, delay: float) -> bool:
        """
        Wait ``delay`` seconds, waking up early if the token is cancelled.

        Returns:
            bool: True if the token is cancelled when the wait ends
        """
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        return self.cancelled
