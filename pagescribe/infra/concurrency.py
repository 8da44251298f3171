"""Concurrency utilities for async task management.

Provides semaphore-based concurrency control for provider requests, plus
helpers that race an awaitable against a caller-supplied cancellation event.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, List, Optional, Tuple

from pagescribe.core.errors import TranscriptionCancelledError

logger = logging.getLogger(__name__)


async def _cancel_and_wait(*tasks: "asyncio.Future[Any]") -> None:
    """Cancel unfinished tasks and wait for them to unwind."""
    for task in tasks:
        if not task.done():
            task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def run_cancellable(
    coro: Coroutine[Any, Any, Any],
    cancel_event: Optional[asyncio.Event] = None,
) -> Any:
    """
    Await a coroutine unless the cancel event fires first.

    When the event is set the coroutine is cancelled and awaited before
    TranscriptionCancelledError is raised. If both finish in the same loop
    iteration, cancellation wins and the result is discarded.

    Args:
        coro: Coroutine to run.
        cancel_event: Optional event signalling cancellation.

    Returns:
        The coroutine's result.

    Raises:
        TranscriptionCancelledError: If the event was set before completion.
    """
    if cancel_event is None:
        return await coro
    if cancel_event.is_set():
        coro.close()
        raise TranscriptionCancelledError()

    task = asyncio.ensure_future(coro)
    watcher = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {task, watcher}, return_when=asyncio.FIRST_COMPLETED
        )
        if watcher in done:
            raise TranscriptionCancelledError()
        return task.result()
    finally:
        await _cancel_and_wait(task, watcher)


async def cancellable_sleep(
    delay: float,
    cancel_event: Optional[asyncio.Event] = None,
) -> None:
    """Sleep for ``delay`` seconds, waking early with an error on cancellation."""
    if delay <= 0:
        if cancel_event is not None and cancel_event.is_set():
            raise TranscriptionCancelledError()
        return
    await run_cancellable(asyncio.sleep(delay), cancel_event)


async def run_bounded(
    corofunc: Callable[..., Awaitable[Any]],
    args_list: List[Tuple[Any, ...]],
    concurrency_limit: int = 3,
    cancel_event: Optional[asyncio.Event] = None,
) -> List[Any]:
    """
    Run an async function over argument tuples with at most
    ``concurrency_limit`` calls in flight, failing fast.

    Results are returned in ``args_list`` order regardless of completion
    order. The first failure (lowest index among tasks finishing together)
    cancels every outstanding task and is re-raised. Setting ``cancel_event``
    stops tasks waiting for a slot from starting, cancels running ones and
    raises TranscriptionCancelledError. No task outlives this call.

    Args:
        corofunc: The async function to execute.
        args_list: List of argument tuples to pass to the function.
        concurrency_limit: Maximum number of concurrent calls (default: 3).
        cancel_event: Optional event signalling cancellation.

    Returns:
        List of results aligned with ``args_list``.
    """
    if concurrency_limit < 1:
        raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
    if not args_list:
        return []

    semaphore = asyncio.Semaphore(concurrency_limit)

    async def worker(args: Tuple[Any, ...]) -> Any:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                raise TranscriptionCancelledError()
            return await corofunc(*args)

    tasks = [asyncio.create_task(worker(args)) for args in args_list]
    position = {task: i for i, task in enumerate(tasks)}
    watcher = (
        asyncio.ensure_future(cancel_event.wait())
        if cancel_event is not None
        else None
    )
    pending = set(tasks)
    try:
        while pending:
            waiting = pending | {watcher} if watcher is not None else pending
            done, _ = await asyncio.wait(
                waiting, return_when=asyncio.FIRST_COMPLETED
            )
            if watcher is not None and watcher in done:
                raise TranscriptionCancelledError()
            for task in sorted(done, key=position.__getitem__):
                pending.discard(task)
                if task.cancelled():
                    raise TranscriptionCancelledError()
                exc = task.exception()
                if exc is not None:
                    logger.error(f"Task {position[task] + 1}/{len(tasks)} failed: {exc}")
                    raise exc
        return [task.result() for task in tasks]
    finally:
        extra = (watcher,) if watcher is not None else ()
        await _cancel_and_wait(*tasks, *extra)
