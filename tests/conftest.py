"""
Shared fixtures: an in-process fake object store and archive builders.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import hashlib
import io
import posixpath
import re
import tarfile
from collections import Counter, defaultdict
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from email.utils import formatdate
from typing import Any

import paramiko
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from paramiko.message import Message

from tarlift.client.session import TOP_LEVEL_AREAS, Session
from tarlift.client.signing import PrivateKeySigner, Signer, md5_fingerprint
from tarlift.core.retry import RetryPolicy

DIRECTORY_TYPE = "application/json; type=directory"
MAX_BODY_SIZE = 64 * 1024 * 1024

_AUTH_PATTERN = re.compile(
    r'^Signature keyId="(?P<key_path>[^"]+)",algorithm="(?P<algorithm>[^"]+)",'
    r'headers="date",signature="(?P<signature>[^"]+)"$'
)


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    md5: str
    etag: str
    last_modified: str


def _error(status: int, code: str, message: str) -> web.Response:
    return web.json_response({"code": code, "message": message}, status=status)


class FakeStore:
    """
    Minimal Manta-like store.

    Verifies signatures against ``public_key``, requires parents to exist,
    checks Content-MD5, and records every mkdir/put in arrival order.
    """

    def __init__(self, public_key: paramiko.PKey, user: str = "alice", put_delay: float = 0.0) -> None:
        self.public_key = public_key
        self.user = user
        self.key_id = md5_fingerprint(public_key)
        self.put_delay = put_delay
        self.directories = {"/", f"/{user}"} | {f"/{user}/{area}" for area in TOP_LEVEL_AREAS}
        self.objects: dict[str, StoredObject] = {}
        self.events: list[tuple[str, str]] = []
        self.mkdir_calls: Counter[str] = Counter()
        self.put_attempts: Counter[str] = Counter()
        self.failures: dict[tuple[str, str], list[int]] = defaultdict(list)
        self.answer_directory_exists = False
        self.in_flight = 0
        self.peak_in_flight = 0

    def fail(self, method: str, path: str, *statuses: int) -> None:
        """Answer the next requests for (method, path) with these statuses."""
        self.failures[(method, path)].extend(statuses)

    def _check_auth(self, request: web.Request) -> web.Response | None:
        match = _AUTH_PATTERN.match(request.headers.get("Authorization", ""))
        date = request.headers.get("Date")
        if match is None or date is None:
            return _error(401, "InvalidCredentials", "missing or malformed Authorization")
        if match["key_path"] != f"/{self.user}/keys/{self.key_id}" or match["algorithm"] != "rsa-sha256":
            return _error(403, "InvalidKeyId", f"unknown key {match['key_path']}")

        msg = Message()
        msg.add_string("rsa-sha2-256")
        msg.add_string(base64.b64decode(match["signature"]))
        msg.rewind()
        if not self.public_key.verify_ssh_sig(f"date: {date}".encode(), msg):
            return _error(401, "InvalidSignature", "signature does not verify")
        return None

    async def handle(self, request: web.Request) -> web.Response:
        path = request.path.rstrip("/") or "/"

        denied = self._check_auth(request)
        if denied is not None:
            return denied

        if request.method == "PUT":
            # Injected failures count as attempts too
            if request.headers.get("Content-Type") == DIRECTORY_TYPE:
                self.mkdir_calls[path] += 1
            else:
                self.put_attempts[path] += 1

        queued = self.failures.get((request.method, path))
        if queued:
            status = queued.pop(0)
            return _error(status, "InjectedFailure", f"injected {status}")

        if request.method == "HEAD":
            return self._head(path)
        if request.method == "PUT":
            if request.headers.get("Content-Type") == DIRECTORY_TYPE:
                return self._mkdir(path)
            return await self._put(request, path)
        return _error(405, "MethodNotAllowed", request.method)

    def _mkdir(self, path: str) -> web.Response:
        self.events.append(("mkdir", path))
        if posixpath.dirname(path) not in self.directories:
            return _error(404, "DirectoryDoesNotExist", f"{posixpath.dirname(path)} does not exist")
        if path in self.directories and self.answer_directory_exists:
            return _error(409, "DirectoryExists", f"{path} already exists")
        self.directories.add(path)
        return web.Response(status=204)

    async def _put(self, request: web.Request, path: str) -> web.Response:
        self.events.append(("put", path))
        if posixpath.dirname(path) not in self.directories:
            return _error(404, "DirectoryDoesNotExist", f"{posixpath.dirname(path)} does not exist")

        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            data = await request.read()
            if self.put_delay:
                await asyncio.sleep(self.put_delay)
        finally:
            self.in_flight -= 1

        md5 = base64.b64encode(hashlib.md5(data).digest()).decode()
        if request.headers.get("Content-MD5") != md5:
            return _error(400, "ContentMD5Mismatch", f"expected {request.headers.get('Content-MD5')}, got {md5}")
        if request.headers.get("If-None-Match") == "*" and path in self.objects:
            return _error(412, "PreconditionFailed", f"{path} already exists")

        etag = hashlib.sha1(data).hexdigest()
        self.objects[path] = StoredObject(
            data=data,
            content_type=request.headers.get("Content-Type", "application/octet-stream"),
            md5=md5,
            etag=etag,
            last_modified=formatdate(usegmt=True),
        )
        return web.Response(status=204, headers={"ETag": etag})

    def _head(self, path: str) -> web.Response:
        if path in self.directories:
            return web.Response(status=200, headers={"Content-Type": "application/x-json-stream; type=directory"})
        obj = self.objects.get(path)
        if obj is None:
            return web.Response(status=404)
        return web.Response(
            status=200,
            body=obj.data,
            headers={
                "Content-Type": obj.content_type,
                "Content-MD5": obj.md5,
                "ETag": obj.etag,
                "Last-Modified": obj.last_modified,
            },
        )

    @contextlib.asynccontextmanager
    async def serve(self, signer: Signer | None = None, **session_kwargs: Any) -> AsyncIterator[Session]:
        """Run the store on a local port and yield an open Session against it."""
        app = web.Application(client_max_size=MAX_BODY_SIZE)
        app.router.add_route("*", "/{tail:.*}", self.handle)
        server = TestServer(app)
        await server.start_server()
        try:
            signer = signer or PrivateKeySigner(self.public_key)
            async with Session(str(server.make_url("/")), self.user, signer, **session_kwargs) as session:
                yield session
        finally:
            await server.close()


@pytest.fixture(scope="session")
def rsa_key() -> paramiko.RSAKey:
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def fake_store(rsa_key) -> FakeStore:
    return FakeStore(rsa_key)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_delay=0.001, max_delay=0.01, jitter=False)


ArchiveMember = tuple[str, str] | tuple[str, str, bytes | str]


def build_archive(members: list[ArchiveMember], format: int = tarfile.PAX_FORMAT) -> bytes:
    """
    Build a tar archive in memory.

    Members are ("dir", name), ("file", name, data) or ("symlink", name, target).
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=format) as tar:
        for member in members:
            kind, name = member[0], member[1]
            info = tarfile.TarInfo(name)
            info.mtime = 1700000000
            if kind == "dir":
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            elif kind == "file":
                data = member[2]
                data = data.encode() if isinstance(data, str) else data
                info.size = len(data)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(data))
            elif kind == "symlink":
                info.type = tarfile.SYMTYPE
                info.linkname = str(member[2])
                tar.addfile(info)
            else:
                raise ValueError(f"unknown member kind {kind}")
    return buffer.getvalue()


@pytest.fixture
def make_archive() -> Callable[..., io.BytesIO]:
    def _make(members: list[ArchiveMember], format: int = tarfile.PAX_FORMAT) -> io.BytesIO:
        return io.BytesIO(build_archive(members, format=format))

    return _make


@pytest.fixture
def sample_archive(make_archive) -> io.BytesIO:
    """subdir1/ with one file plus a top-level file."""
    return make_archive(
        [
            ("dir", "subdir1/"),
            ("file", "subdir1/test.txt", "this is subdir1/test.tx\n"),
            ("file", "test.txt", "hello from test.txt\n"),
        ]
    )
