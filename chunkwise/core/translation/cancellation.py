"""
Cooperative cancellation for in-flight model calls.
"""
import asyncio
from typing import Awaitable, Optional, TypeVar

from chunkwise.core.exceptions import TranslationCancelledError

T = TypeVar('T')


class CancellationToken:
    """
    A stop flag that in-flight requests race against.

    ``race()`` resolves with the awaited result, or raises
    TranslationCancelledError as soon as ``cancel()`` is called. Requests
    started after cancellation fail immediately until ``reset()``.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def reset(self) -> None:
        self._event.clear()
        self.reason = None

    async def race(self, awaitable: Awaitable[T]) -> T:
        if self.is_cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise TranslationCancelledError(self.reason or "Cancelled by user")

        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if not stop.done():
                stop.cancel()

        if work.done():
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise TranslationCancelledError(self.reason or "Cancelled by user")
