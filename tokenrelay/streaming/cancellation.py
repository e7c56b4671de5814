"""
tokenrelay - Cancellation Token

One-shot stop signal shared between the relay (consumer) and an upstream
adapter (producer).
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, TypeVar


T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised by CancellationToken.guard when the token fires first."""

    def __init__(self, reason: str = ""):
        self.reason = reason
        super().__init__(reason or "operation cancelled")


class CancellationToken:
    """
    One-shot cancellation signal.

    cancel() fires at most once; later calls are no-ops. Callbacks run
    synchronously in the firing call, in registration order.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[str], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """
        Fire the token.

        Returns True if this call fired it, False if it had already fired.
        """
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)
        return True

    def add_callback(self, callback: Callable[[str], None]) -> None:
        """Run callback(reason) on cancellation, immediately if already fired."""
        if self._event.is_set():
            callback(self._reason or "")
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._reason or "")

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason or ""

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        When the token wins, the pending awaitable is cancelled and
        OperationCancelled is raised.
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        fired = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, fired}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            fired.cancel()

        if not self._event.is_set():
            return task.result()

        # Cancellation wins even if the read completed in the same step.
        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, Exception):
            pass
        raise OperationCancelled(self._reason or "")
