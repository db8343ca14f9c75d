"""
Async helpers for request-scoped work.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")


async def run_to_completion(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` so that cancelling the caller does not interrupt it.

    Request handlers are cancelled when the client disconnects. Work that
    writes to the store is wrapped here: the caller still observes the
    cancellation, but only after the wrapped work has finished.
    """
    task = asyncio.ensure_future(coro)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        if not task.done():
            await asyncio.wait({task})
        raise
