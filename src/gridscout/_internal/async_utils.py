"""Asyncio utilities."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Coroutine


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run an async coroutine from synchronous code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        import concurrent.futures

        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    else:
        return asyncio.run(coro)


async def cancel_task(task: asyncio.Task[Any] | None) -> None:
    """Cancel *task* (if still pending) and wait for it to unwind."""
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def now_ms() -> int:
    """Milliseconds since the Unix epoch."""
    import time

    return int(time.time() * 1000)
