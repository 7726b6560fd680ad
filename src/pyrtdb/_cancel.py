"""Cooperative cancellation through :class:`asyncio.Event` signals.

Callers hand an ``asyncio.Event`` to an operation and set it to abandon the
operation.  The in-flight work runs as its own task so it can be cancelled,
which releases any HTTP connection it holds.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from pyrtdb.exceptions import RtdbCancelledError

_logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _settle(task: asyncio.Future[Any]) -> None:
    """Cancel *task* and wait until it has actually finished."""
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        _logger.debug("Operation failed while being cancelled", exc_info=True)


def is_cancelled(*signals: asyncio.Event | None) -> bool:
    """Return ``True`` when any of *signals* is set."""
    return any(signal is not None and signal.is_set() for signal in signals)


async def run_cancellable(awaitable: Awaitable[T], *signals: asyncio.Event | None) -> T:
    """Await *awaitable* unless one of *signals* fires first.

    Raises :class:`RtdbCancelledError` when a signal wins; the inner task is
    cancelled and awaited before the error is raised.  ``None`` signals are
    ignored, so callers can pass optional events straight through.
    """
    active = [signal for signal in signals if signal is not None]
    if not active:
        return await awaitable

    if is_cancelled(*active):
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise RtdbCancelledError("Operation cancelled before it started")

    task = asyncio.ensure_future(awaitable)
    waiters = [asyncio.ensure_future(signal.wait()) for signal in active]
    try:
        done, _pending = await asyncio.wait({task, *waiters}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await _settle(task)
        raise
    finally:
        for waiter in waiters:
            waiter.cancel()

    if task in done:
        return task.result()

    await _settle(task)
    raise RtdbCancelledError("Operation cancelled")
