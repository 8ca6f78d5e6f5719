"""Exactly-once release of per-request stream resources."""

import logging
from contextlib import AsyncExitStack
from typing import Awaitable, Callable

import anyio

logger = logging.getLogger(__name__)


class LifecycleGuard:
    """Releases a request's streams once, however the request ends.

    Resources are registered with ``push`` and released in reverse order by
    ``release``. The response boundary registers itself with ``observe``;
    only one observer is allowed per request. ``release`` may be awaited any
    number of times, from normal completion, rejection or client disconnect,
    and only the first call has any effect.
    """

    def __init__(self) -> None:
        self._stack = AsyncExitStack()
        self._released = False
        self._observed = False

    @property
    def released(self) -> bool:
        return self._released

    def push(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register an async release callback."""
        if self._released:
            raise RuntimeError("Cannot register resources on a released guard")
        self._stack.push_async_callback(callback)

    def observe(self) -> None:
        """Register the single cancellation observer for this request."""
        if self._observed:
            raise RuntimeError("A cancellation observer is already registered")
        self._observed = True

    async def release(self) -> None:
        """Release every registered resource. Idempotent."""
        if self._released:
            return
        self._released = True

        # A disconnect cancels the request's scope; cleanup must still run.
        with anyio.CancelScope(shield=True):
            try:
                await self._stack.aclose()
            except Exception as e:
                logger.error(f"Failed to release stream resources: {e}", exc_info=True)
