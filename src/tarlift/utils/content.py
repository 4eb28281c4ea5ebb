"""
Content helpers for uploads.

Spools archive entry content into a replayable buffer while computing the
MD5 digest the store verifies, and guesses content types by extension.
"""

import base64
import hashlib
import mimetypes
import tempfile
from collections.abc import AsyncIterator
from typing import BinaryIO, Protocol

from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.utils.content")

DIRECTORY_CONTENT_TYPE = "application/json; type=directory"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Spooled payloads stay in memory up to this size, then roll over to disk
SPOOL_MAX_MEMORY = 1024 * 1024
CHUNK_SIZE = 64 * 1024


class Readable(Protocol):
    def read(self, size: int = -1) -> bytes: ...


def guess_content_type(path: str) -> str:
    """
    Guess a content type from a file name.

    Args:
        path: Remote or archive path of the file

    Returns:
        MIME type, DEFAULT_CONTENT_TYPE when the extension is unknown
    """
    content_type, encoding = mimetypes.guess_type(path, strict=False)
    if content_type is None or encoding is not None:
        # Compressed files (foo.tar.gz) are stored as opaque bytes
        return DEFAULT_CONTENT_TYPE
    return content_type


def md5_base64(data: bytes) -> str:
    """Base64 MD5 digest, the format of the Content-MD5 header."""
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


class SpooledPayload:
    """
    Replayable upload body.

    Content is copied from a single-pass source into a SpooledTemporaryFile
    while the MD5 digest and size are computed, so the source can advance
    and the body can be sent again on retry.
    """

    def __init__(self, max_memory: int = SPOOL_MAX_MEMORY) -> None:
        self._file: BinaryIO = tempfile.SpooledTemporaryFile(max_size=max_memory)  # type: ignore[assignment]
        self._md5 = hashlib.md5()
        self.size = 0
        self._sealed = False

    @classmethod
    def from_stream(cls, source: Readable, max_memory: int = SPOOL_MAX_MEMORY) -> "SpooledPayload":
        """Drain ``source`` into a new payload."""
        payload = cls(max_memory=max_memory)
        try:
            for chunk in iter(lambda: source.read(CHUNK_SIZE), b""):
                payload.write(chunk)
        except BaseException:
            payload.close()
            raise
        payload.seal()
        return payload

    @classmethod
    def from_bytes(cls, data: bytes) -> "SpooledPayload":
        payload = cls(max_memory=max(len(data), 1))
        payload.write(data)
        payload.seal()
        return payload

    def write(self, chunk: bytes) -> None:
        if self._sealed:
            raise ValueError("payload is sealed")
        self._file.write(chunk)
        self._md5.update(chunk)
        self.size += len(chunk)

    def seal(self) -> None:
        self._sealed = True

    @property
    def md5(self) -> str:
        """Base64 MD5 of everything written."""
        return base64.b64encode(self._md5.digest()).decode("ascii")

    async def chunks(self) -> AsyncIterator[bytes]:
        """Yield the content from the start; each call replays the whole body."""
        self._file.seek(0)
        while True:
            chunk = self._file.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk

    def read_all(self) -> bytes:
        self._file.seek(0)
        return self._file.read()

    def close(self) -> None:
        try:
            self._file.close()
        except OSError as e:
            logger.debug(f"Error closing spooled payload: {e}")

    def __enter__(self) -> "SpooledPayload":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
