"""Cooperative cancellation shared by every suspension point.

A :class:`CancellationToken` is threaded through generation, sandbox
execution and reflection.  Firing it never interrupts work that is
already running in a worker thread or a remote service; instead every
awaited call is raced against the token so the caller observes the
abort as soon as it happens, and the abandoned call finishes on its own.
"""
from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

from regexsmith_core.errors import OperationAbortedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation flag with awaitable notification."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Fire the token.  Calling it again is a no-op."""
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register *callback* to run when the token fires.

        Runs immediately when the token has already fired.
        """
        if self._event.is_set():
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationAbortedError()

    async def wait(self) -> None:
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        Raises :class:`OperationAbortedError` when the token wins (or had
        already fired).  The losing task is cancelled; a worker thread
        behind it keeps running until it returns.
        """
        work = asyncio.ensure_future(awaitable)
        if self._event.is_set():
            work.cancel()
            raise OperationAbortedError()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        work.add_done_callback(_discard_outcome)
        raise OperationAbortedError()


def _discard_outcome(task: asyncio.Future) -> None:
    # The caller has moved on; consume the outcome so asyncio does not
    # report it as never retrieved.
    if not task.cancelled():
        task.exception()


async def race(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Race *awaitable* against *token*, or simply await it without one."""
    if token is None:
        return await awaitable
    return await token.race(awaitable)
