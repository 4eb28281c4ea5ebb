"""
Async helpers.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")


def dual(func: Callable[..., Awaitable[T]]) -> Callable[..., Any]:
    """
    Let a coroutine function be called from sync code too.

    Outside an event loop the call runs to completion with asyncio.run();
    inside one it returns the coroutine for the caller to await.

    Usage:
        @dual
        async def upload_archive(...): ...

        result = upload_archive(...)        # script
        result = await upload_archive(...)  # inside async code
    """
    if not inspect.iscoroutinefunction(func):
        raise TypeError("@dual can only be applied to async def functions")

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        coro = func(*args, **kwargs)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coro)
        return coro

    return wrapper
