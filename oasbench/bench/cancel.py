import asyncio
import logging
from typing import Awaitable, TypeVar

from oasbench.exceptions import RunCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelScope:
    """One cancellable context spanning a whole multi-operation run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.info("run cancelled")
        self._event.set()

    def check(self) -> None:
        if self._event.is_set():
            raise RunCancelled("run cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the scope fires first, in which case it is cancelled."""
        self.check()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise RunCancelled("run cancelled")
