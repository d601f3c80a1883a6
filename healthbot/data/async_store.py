"""Async view of a synchronous store.

HealthDB talks to sqlite3, which blocks. Engine components await store
calls instead: each call runs in a worker thread via asyncio.to_thread and
is bounded by a deadline so a locked database cannot stall a tick.
"""

from __future__ import annotations

import asyncio
import functools
from typing import TYPE_CHECKING, Any, Callable, Awaitable

if TYPE_CHECKING:
    from healthbot.ports.store_port import StorePort


class AsyncStore:
    """Wrap a StorePort so that `await store.method(...)` works.

    Raises asyncio.TimeoutError when a call exceeds `timeout` seconds.
    """

    def __init__(self, store: StorePort, timeout: float = 5.0) -> None:
        self._store = store
        self._timeout = timeout

    @property
    def sync(self) -> StorePort:
        """The wrapped store, for bootstrap code and tests."""
        return self._store

    def __getattr__(self, name: str) -> Callable[..., Awaitable[Any]]:
        method = getattr(self._store, name)
        if not callable(method):
            raise AttributeError(f"{name} is not a store operation")

        @functools.wraps(method)
        async def call(*args: Any, **kwargs: Any) -> Any:
            return await asyncio.wait_for(
                asyncio.to_thread(method, *args, **kwargs), timeout=self._timeout,
            )

        return call
