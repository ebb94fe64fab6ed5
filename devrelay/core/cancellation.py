"""Deadline and abort handling for a single in-flight call."""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from devrelay.core.errors import CancellationError, TokenReusedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Aborts one in-flight call on deadline or on request.

    Usage:
        token = CancellationToken(timeout=0.8)
        response = await token.run(client.get(url))

    When the token fires before the call finishes, the call's task is
    cancelled (httpx closes the connection right away) and ``run`` raises
    CancellationError. Firing after completion does nothing.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Deadline in seconds, measured from the start of ``run``.
                None = no deadline, only explicit ``cancel()``.
        """
        self._timeout = timeout
        self._fired = asyncio.Event()
        self._consumed = False
        self._completed = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._fired.is_set()

    @property
    def consumed(self) -> bool:
        return self._consumed

    def cancel(self, reason: str = "aborted") -> None:
        """Fire the token. A no-op once the call has completed or already fired."""
        if self._completed or self._fired.is_set():
            return
        self.reason = reason
        self._fired.set()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` under this token.

        Raises:
            CancellationError: If the token fires first.
            TokenReusedError: If the token was already bound to a call.
        """
        if self._consumed:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise TokenReusedError("Cancellation token has already been used")
        self._consumed = True

        if self._fired.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self._completed = True
            raise CancellationError("Call cancelled before it started", reason=self.reason or "aborted")

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._fired.wait())
        try:
            await asyncio.wait(
                {task, waiter},
                timeout=self._timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            await asyncio.gather(task, return_exceptions=True)
            self._completed = True
            raise

        if task.done():
            waiter.cancel()
            self._completed = True
            return task.result()

        if not self._fired.is_set():
            self.reason = "deadline"
            self._fired.set()

        # Wait for the task to unwind so its connection is released before returning
        task.cancel()
        waiter.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self._completed = True

        logger.debug("Call cancelled: %s", self.reason)
        if self.reason == "deadline":
            raise CancellationError(f"Deadline of {self._timeout}s exceeded", reason="deadline")
        raise CancellationError("Call aborted", reason=self.reason or "aborted")
