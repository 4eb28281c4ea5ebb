"""
Remote store operations: create directory, create object, info.

Each operation is one signed request wrapped by the retry manager.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from tarlift.client.http import SigningClient, StoreResponse
from tarlift.core.paths import RemotePath
from tarlift.core.retry import RetryManager, RetryPolicy
from tarlift.utils.content import DIRECTORY_CONTENT_TYPE, SpooledPayload
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.client.store")

# Error codes meaning "the directory is already there"
DIRECTORY_EXISTS_CODES = frozenset({"DirectoryExists", "DirectoryExistsError"})


class ConflictPolicy(StrEnum):
    """What to do when an object already exists at an upload path."""

    OVERWRITE = "overwrite"
    FAIL = "fail"


@dataclass(frozen=True)
class ObjectInfo:
    """Metadata returned by ``info``."""

    path: str
    type: str
    size: int | None
    md5: str | None
    etag: str | None
    last_modified: str | None

    @property
    def is_directory(self) -> bool:
        return "type=directory" in self.type

    @classmethod
    def from_response(cls, path: str, response: StoreResponse) -> ObjectInfo:
        length = response.header("content-length")
        is_directory = "type=directory" in (response.header("content-type") or "")
        return cls(
            path=path,
            type=response.header("content-type") or "application/octet-stream",
            size=int(length) if length is not None and not is_directory else None,
            md5=response.header("content-md5"),
            etag=response.header("etag"),
            last_modified=response.header("last-modified"),
        )


class StoreClient:
    """
    Store API on top of SigningClient + RetryManager.

    Example:
        ```python
        store = StoreClient(SigningClient(session), RetryPolicy(max_attempts=3))
        await store.mkdir(RemotePath.directory("/alice/stor/backup"))
        info = await store.info("/alice/stor/backup")
        ```
    """

    def __init__(self, client: SigningClient, policy: RetryPolicy | None = None):
        self.client = client
        self.retry = RetryManager(policy)

    async def mkdir(self, path: RemotePath) -> None:
        """
        Create a directory (PUT with the directory content type).

        The store answers 204 for both new and existing directories; some
        deployments answer 409 DirectoryExists instead, which surfaces as
        ConflictError for the caller to tolerate.
        """
        headers = {"Content-Type": DIRECTORY_CONTENT_TYPE}

        async def attempt() -> StoreResponse:
            return await self.client.send("PUT", path.path, headers=headers)

        await self.retry.execute(attempt, operation=f"mkdir {path}")
        logger.debug(f"Directory ready: {path}")

    async def put(
        self,
        path: RemotePath,
        payload: SpooledPayload,
        content_type: str,
        conflict_policy: ConflictPolicy = ConflictPolicy.OVERWRITE,
    ) -> str | None:
        """
        Create or replace an object.

        The body is replayed from the start on every attempt; Content-MD5
        lets the store reject a body damaged in transit.

        Returns:
            ETag of the stored object, if the store sent one

        Raises:
            ConflictError: The object exists and conflict_policy is FAIL
        """
        headers = {
            "Content-Type": content_type,
            "Content-Length": str(payload.size),
            "Content-MD5": payload.md5,
        }
        if conflict_policy is ConflictPolicy.FAIL:
            headers["If-None-Match"] = "*"

        async def attempt() -> StoreResponse:
            return await self.client.send("PUT", path.path, headers=headers, body=payload.chunks())

        response = await self.retry.execute(attempt, operation=f"put {path}")
        logger.debug(f"Stored {path} ({payload.size} bytes, md5 {payload.md5})")
        return response.header("etag")

    async def info(self, path: str | RemotePath) -> ObjectInfo:
        """HEAD a path and return its metadata."""
        raw = path.path if isinstance(path, RemotePath) else path.rstrip("/") or "/"

        async def attempt() -> StoreResponse:
            return await self.client.send("HEAD", raw)

        response = await self.retry.execute(attempt, operation=f"info {raw}")
        return ObjectInfo.from_response(raw, response)
