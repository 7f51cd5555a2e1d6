"""Cooperative cancellation shared by every suspending call in a run.

WHY: A batch run fans out several provider calls at once, and an ASR
call can take minutes. The caller needs one switch that stops all of
them, and the orchestrator must be able to tell "the user cancelled"
apart from "the network failed".

HOW: CancellationToken wraps an asyncio.Event. It is passed explicitly
to every suspending call. run_cancellable() races the wrapped coroutine
against the token and raises TransformCancelledError when the token
wins, cancelling the in-flight request.

RULES:
- A token is checked before a call starts and honoured while it runs
- Cancellation is one-way; a cancelled token stays cancelled
- cancel() must be called from the event loop thread
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class TransformCancelledError(Exception):
    """Raised when a call observes that its cancellation token was triggered.

    Distinct from transport and content errors: a cancelled run is
    reported as cancelled, never retried, and applies no partial output.
    """


class CancellationToken:
    """A one-shot cancellation flag that coroutines can await."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TransformCancelledError("Operation cancelled")

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(
    awaitable: Awaitable[T],
    token: CancellationToken | None,
) -> T:
    """Await awaitable unless token is cancelled first.

    Args:
        awaitable: The suspending call (usually an HTTP request).
        token: Shared cancellation token, or None for an uncancellable call.

    Returns:
        Whatever the awaitable returns.

    Raises:
        TransformCancelledError: If the token was cancelled before or
            during the call. The in-flight call is cancelled.
    """
    if token is None:
        return await awaitable

    if token.cancelled:
        # Close the coroutine so it does not warn about never being awaited
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise TransformCancelledError("Operation cancelled")

    call_task = asyncio.ensure_future(awaitable)
    cancel_task = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({call_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        call_task.cancel()
        raise
    finally:
        if not cancel_task.done():
            cancel_task.cancel()

    if call_task.done():
        return call_task.result()

    call_task.cancel()
    try:
        await call_task
    except asyncio.CancelledError:
        pass
    raise TransformCancelledError("Operation cancelled")
