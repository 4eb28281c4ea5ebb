"""
Idempotent, single-flight directory creation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Iterator

from tarlift.client.store import DIRECTORY_EXISTS_CODES
from tarlift.core.paths import RemotePath
from tarlift.exceptions import ConflictError
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.core.directories")

CreateDirectory = Callable[[RemotePath], Awaitable[None]]


class DirectorySet:
    """Directories confirmed present during this run. Only ever grows."""

    def __init__(self, initial: Iterable[str] = ()) -> None:
        self._paths: set[str] = set(initial)

    def __contains__(self, path: object) -> bool:
        if isinstance(path, RemotePath):
            path = path.path
        return path in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._paths))

    def add(self, path: RemotePath) -> None:
        self._paths.add(path.path)


class DirectoryEnsurer:
    """
    Makes sure every ancestor of a path exists, creating each one once.

    Concurrent callers that need the same directory share one creation call:
    the first caller issues it and the others await the same future. A
    failure is delivered to every waiter and nothing is recorded, so a later
    ensure() tries again.

    Examples:
        >>> ensurer = DirectoryEnsurer(store.mkdir, preexisting=session.top_level_directories())
        >>> await ensurer.ensure(RemotePath("/alice/stor/a/b/c.txt"))  # creates a, a/b
    """

    def __init__(self, create: CreateDirectory, preexisting: Iterable[str] = ("/",)) -> None:
        """
        Args:
            create: Coroutine function that creates one directory remotely
            preexisting: Paths known to exist without asking the store
        """
        self._create = create
        self.confirmed = DirectorySet(preexisting)
        self._pending: dict[str, asyncio.Future[None]] = {}
        self._lock = asyncio.Lock()
        self.creation_calls = 0

    async def ensure(self, path: RemotePath) -> None:
        """
        Ensure all directories leading to ``path`` exist (``path`` too, if a directory).

        Raises:
            TarliftError: The creation call for some ancestor failed
        """
        for directory in path.ancestors():
            await self._ensure_one(directory)

    async def _ensure_one(self, directory: RemotePath) -> None:
        async with self._lock:
            if directory in self.confirmed:
                return
            future = self._pending.get(directory.path)
            owner = future is None
            if owner:
                future = asyncio.get_running_loop().create_future()
                self._pending[directory.path] = future
                self.creation_calls += 1

        assert future is not None
        if owner:
            try:
                await self._create_tolerating_exists(directory)
            except BaseException as e:
                async with self._lock:
                    self._pending.pop(directory.path, None)
                if isinstance(e, asyncio.CancelledError):
                    future.cancel()
                    raise
                future.set_exception(e)
            else:
                async with self._lock:
                    self.confirmed.add(directory)
                    self._pending.pop(directory.path, None)
                future.set_result(None)

        # Waiters get the owner's outcome; shield so one cancelled waiter
        # does not cancel the shared future
        await asyncio.shield(future)

    async def _create_tolerating_exists(self, directory: RemotePath) -> None:
        try:
            await self._create(directory)
        except ConflictError as e:
            if e.code not in DIRECTORY_EXISTS_CODES:
                raise
            logger.debug(f"Directory already exists: {directory}")
