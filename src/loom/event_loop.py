"""
Loom event loop runner

Runs a coroutine on a private asyncio event loop owned by the *calling*
thread. The VM is single-threaded, so unlike a shared background loop the
drive loop must execute on the thread that owns the VM: every continuation
touches the VM, and only operations themselves may hand blocking work to
the loop's executor.

Usage:
    from loom.event_loop import run

    run(scheduler.drive(), debug=True)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger("loom.event_loop")


def is_loop_running() -> bool:
    """Return True if an event loop is already running on this thread."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def new_event_loop(
    debug: bool = False,
    slow_callback_duration: Optional[float] = None,
) -> asyncio.AbstractEventLoop:
    loop = asyncio.new_event_loop()
    loop.set_debug(debug)
    if slow_callback_duration is not None:
        loop.slow_callback_duration = slow_callback_duration
    return loop


def run(
    coro: Coroutine[Any, Any, T],
    *,
    debug: bool = False,
    slow_callback_duration: Optional[float] = None,
) -> T:
    """Run *coro* to completion on a fresh loop and **block** until done.

    Parameters
    ----------
    coro : coroutine
        The coroutine to run.
    debug : bool
        Enable asyncio debug mode for the loop.
    slow_callback_duration : float | None
        Seconds after which a callback is logged as slow (debug mode).

    Returns
    -------
    The coroutine's return value.

    Raises
    ------
    Any exception the coroutine raises.
    RuntimeError if a loop is already running on this thread.
    """
    if is_loop_running():
        coro.close()
        raise RuntimeError(
            "loom.event_loop.run() cannot be called from a running event loop; "
            "await the coroutine instead"
        )
    loop = new_event_loop(debug=debug, slow_callback_duration=slow_callback_duration)
    try:
        return loop.run_until_complete(coro)
    finally:
        try:
            _cancel_pending(loop)
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.run_until_complete(loop.shutdown_default_executor())
        finally:
            loop.close()


def _cancel_pending(loop: asyncio.AbstractEventLoop) -> None:
    pending = asyncio.all_tasks(loop)
    if not pending:
        return
    logger.debug("Cancelling %d leftover task(s)", len(pending))
    for task in pending:
        task.cancel()
    loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
