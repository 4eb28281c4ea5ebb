"""
Upload scheduler.

One producer walks the archive (a tar stream can only be read in order)
and hands each entry to a bounded pool of asyncio workers. A worker
ensures the entry's directories exist, then uploads the file. Directory
creation is a per-task dependency, so unrelated subtrees proceed in
parallel.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import BinaryIO

from tarlift.archive.reader import ArchiveEntry, ArchiveReader, EntryKind
from tarlift.client.store import ConflictPolicy, StoreClient
from tarlift.core.directories import DirectoryEnsurer
from tarlift.core.paths import PathMapper, RemotePath
from tarlift.exceptions import (
    ArchiveFormatError,
    AuthenticationError,
    PartialRunError,
    PathError,
    TarliftError,
    UnsupportedEntryError,
    describe,
)
from tarlift.utils.content import DIRECTORY_CONTENT_TYPE, SpooledPayload, guess_content_type
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.core.scheduler")

DEFAULT_CONCURRENCY = 4

# Errors after which no further entries are dispatched
RUN_FATAL_ERRORS: tuple[type[Exception], ...] = (AuthenticationError, ArchiveFormatError)


@dataclass
class UploadTask:
    """One unit of work derived from an archive entry, owned by a single worker."""

    entry_path: str
    remote_path: RemotePath
    kind: EntryKind
    payload: SpooledPayload | None = None
    content_type: str = DIRECTORY_CONTENT_TYPE
    expected_size: int | None = None

    def close(self) -> None:
        if self.payload is not None:
            self.payload.close()


class OutcomeStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class EntryOutcome:
    """What happened to one archive entry."""

    entry_path: str
    remote_path: str | None
    kind: EntryKind
    status: OutcomeStatus
    size: int = 0
    error: BaseException | None = None
    reason: str | None = None

    @property
    def error_kind(self) -> str | None:
        if self.error is None:
            return None
        return self.error.kind if isinstance(self.error, TarliftError) else type(self.error).__name__


@dataclass
class RunResult:
    """Aggregate outcome of an upload run."""

    succeeded: list[EntryOutcome] = field(default_factory=list)
    failed: list[EntryOutcome] = field(default_factory=list)
    skipped: list[EntryOutcome] = field(default_factory=list)
    fatal_error: BaseException | None = None
    peak_concurrency: int = 0
    bytes_uploaded: int = 0
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.fatal_error is None and not self.failed

    @property
    def files(self) -> list[EntryOutcome]:
        return [o for o in self.succeeded if o.kind is EntryKind.FILE]

    @property
    def directories(self) -> list[EntryOutcome]:
        return [o for o in self.succeeded if o.kind is EntryKind.DIRECTORY]

    def add(self, outcome: EntryOutcome) -> None:
        if outcome.status is OutcomeStatus.SUCCEEDED:
            self.succeeded.append(outcome)
            if outcome.kind is EntryKind.FILE:
                self.bytes_uploaded += outcome.size
        elif outcome.status is OutcomeStatus.FAILED:
            self.failed.append(outcome)
        else:
            self.skipped.append(outcome)

    def raise_for_status(self) -> None:
        """
        Raise if the run did not fully succeed.

        Raises:
            TarliftError: The run-fatal error that stopped the run
            PartialRunError: Some entries failed
        """
        if self.fatal_error is not None:
            raise self.fatal_error
        if self.failed:
            raise PartialRunError(self)


class UploadScheduler:
    """
    Drives archive entries through directory creation and upload.

    Examples:
        >>> scheduler = UploadScheduler(store, concurrency=8)
        >>> with open("backup.tar", "rb") as f:
        ...     result = await scheduler.run(f, "/alice/stor/backup")
        >>> result.raise_for_status()
    """

    def __init__(
        self,
        store: StoreClient,
        ensurer: DirectoryEnsurer | None = None,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        conflict_policy: ConflictPolicy = ConflictPolicy.OVERWRITE,
        strict: bool = False,
        fail_fast: bool = False,
    ):
        """
        Initialize the scheduler.

        Args:
            store: Store operations (already wrapped with retry)
            ensurer: Directory ensurer; defaults to one over store.mkdir that
                treats the account's top-level directories as present
            concurrency: Maximum uploads in flight
            conflict_policy: Replace existing objects or fail the entry
            strict: Fail (instead of skip) entries that are not files or directories
            fail_fast: Stop dispatching after the first failed entry
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.store = store
        self.ensurer = ensurer or DirectoryEnsurer(
            store.mkdir, preexisting=store.client.session.top_level_directories()
        )
        self.concurrency = concurrency
        self.conflict_policy = conflict_policy
        self.strict = strict
        self.fail_fast = fail_fast
        self._in_flight = 0

    async def run(
        self,
        archive: BinaryIO,
        destination_root: str,
        concurrency: int | None = None,
    ) -> RunResult:
        """
        Upload every entry of ``archive`` under ``destination_root``.

        Args:
            archive: Binary stream positioned at the start of a tar archive
            destination_root: Absolute store directory to extract into
            concurrency: Overrides the scheduler's concurrency for this run

        Returns:
            RunResult listing every entry's outcome; run-fatal errors are
            reported in ``fatal_error`` rather than raised
        """
        limit = concurrency or self.concurrency
        if limit < 1:
            raise ValueError("concurrency must be >= 1")

        mapper = PathMapper(destination_root)
        reader = ArchiveReader(archive)
        result = RunResult()
        cancelled = asyncio.Event()
        slots = asyncio.Semaphore(limit)
        workers: set[asyncio.Task[None]] = set()
        started = time.monotonic()

        logger.info(f"Uploading archive to {mapper.root} (concurrency {limit})")

        try:
            while not cancelled.is_set():
                # Header reads and skips block on the archive stream
                entry = await asyncio.to_thread(reader.next_entry)
                if entry is None:
                    break

                task = await self._prepare(entry, mapper, result, cancelled)
                if task is None:
                    continue

                await slots.acquire()
                if cancelled.is_set():
                    slots.release()
                    task.close()
                    break

                worker = asyncio.create_task(self._work(task, result, cancelled, slots))
                workers.add(worker)
                worker.add_done_callback(workers.discard)
        except ArchiveFormatError as e:
            logger.error(f"Archive is unreadable at offset {reader.offset}: {e}")
            self._abort(result, cancelled, e)
        except OSError as e:
            logger.error(f"Cannot read archive at offset {reader.offset}: {e}")
            self._abort(result, cancelled, e)
        except asyncio.CancelledError:
            for worker in workers:
                worker.cancel()
            raise
        finally:
            # Drain in-flight work; no rollback of what was already stored
            if workers:
                await asyncio.gather(*workers, return_exceptions=True)

        result.duration = time.monotonic() - started
        logger.info(
            f"Finished in {result.duration:.2f}s: {len(result.files)} files "
            f"({result.bytes_uploaded} bytes), {len(result.directories)} directories, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    def _abort(self, result: RunResult, cancelled: asyncio.Event, error: BaseException) -> None:
        if result.fatal_error is None:
            result.fatal_error = error
        if not cancelled.is_set():
            logger.error(f"Stopping run: {type(error).__name__}: {error}")
            cancelled.set()

    def _fail(
        self,
        result: RunResult,
        cancelled: asyncio.Event,
        entry_path: str,
        remote_path: str | None,
        kind: EntryKind,
        error: BaseException,
    ) -> None:
        logger.error(f"{remote_path or entry_path}: {type(error).__name__}: {error}")
        logger.debug(f"Failure details for {entry_path}: {describe(error)}")
        result.add(EntryOutcome(entry_path, remote_path, kind, OutcomeStatus.FAILED, error=error))
        if isinstance(error, RUN_FATAL_ERRORS) or self.fail_fast:
            self._abort(result, cancelled, error)

    async def _prepare(
        self,
        entry: ArchiveEntry,
        mapper: PathMapper,
        result: RunResult,
        cancelled: asyncio.Event,
    ) -> UploadTask | None:
        """Turn an entry into an UploadTask, consuming its content."""
        if entry.kind is EntryKind.UNSUPPORTED:
            if self.strict:
                error = UnsupportedEntryError(entry.path, entry.typeflag)
                self._fail(result, cancelled, entry.path, None, entry.kind, error)
            else:
                logger.warning(f"Skipping unsupported entry {entry.path} (type {entry.typeflag!r})")
                result.add(
                    EntryOutcome(
                        entry.path,
                        None,
                        entry.kind,
                        OutcomeStatus.SKIPPED,
                        reason=f"unsupported entry type {entry.typeflag!r}",
                    )
                )
            return None

        try:
            remote = mapper.map(entry.path, is_directory=entry.is_directory)
        except PathError as e:
            await asyncio.to_thread(entry.skip)
            self._fail(result, cancelled, entry.path, None, entry.kind, e)
            return None

        if entry.is_directory:
            return UploadTask(entry.path, remote, EntryKind.DIRECTORY)

        assert entry.content is not None
        # Spool off the event loop so in-flight uploads keep moving
        try:
            payload = await asyncio.to_thread(SpooledPayload.from_stream, entry.content)
        except OSError as e:
            # The archive is left mid-entry, so nothing after it can be read
            self._fail(result, cancelled, entry.path, str(remote), EntryKind.FILE, e)
            self._abort(result, cancelled, e)
            return None
        return UploadTask(
            entry.path,
            remote,
            EntryKind.FILE,
            payload=payload,
            content_type=guess_content_type(remote.path),
            expected_size=entry.size,
        )

    async def _work(
        self,
        task: UploadTask,
        result: RunResult,
        cancelled: asyncio.Event,
        slots: asyncio.Semaphore,
    ) -> None:
        self._in_flight += 1
        result.peak_concurrency = max(result.peak_concurrency, self._in_flight)
        remote = str(task.remote_path)
        try:
            if cancelled.is_set():
                result.add(EntryOutcome(task.entry_path, remote, task.kind, OutcomeStatus.SKIPPED, reason="run cancelled"))
                return

            if task.kind is EntryKind.DIRECTORY:
                await self.ensurer.ensure(task.remote_path)
                size = 0
            else:
                assert task.payload is not None
                await self.ensurer.ensure(task.remote_path.parent)
                if cancelled.is_set():
                    result.add(
                        EntryOutcome(task.entry_path, remote, task.kind, OutcomeStatus.SKIPPED, reason="run cancelled")
                    )
                    return
                await self.store.put(task.remote_path, task.payload, task.content_type, self.conflict_policy)
                size = task.payload.size

            result.add(EntryOutcome(task.entry_path, remote, task.kind, OutcomeStatus.SUCCEEDED, size=size))
        except TarliftError as e:
            self._fail(result, cancelled, task.entry_path, remote, task.kind, e)
        except Exception as e:
            logger.exception(f"Unexpected error uploading {remote}")
            self._fail(result, cancelled, task.entry_path, remote, task.kind, e)
        finally:
            self._in_flight -= 1
            task.close()
            slots.release()
