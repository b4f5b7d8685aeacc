"""Single-lane gate for operations that mutate the managed runtime."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class OperationQueue:
    """Runs queued coroutines one at a time, in arrival order.

    The next operation starts only after the previous one has settled, whether
    it returned or raised; a failure never blocks later operations. Only
    protects a single process: separate processes sharing one venv directory
    are not serialized.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._pending = 0

    @property
    def pending(self) -> int:
        """Operations waiting or running."""
        return self._pending

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def enqueue(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn()`` once every earlier operation has finished."""
        self._pending += 1
        try:
            async with self._lock:
                return await fn()
        finally:
            self._pending -= 1
