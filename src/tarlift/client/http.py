"""
Signing HTTP client.

Every request gets a fresh Date header and an Authorization header signed
over ``date: <Date>``. Error responses are classified into the tarlift
exception hierarchy so the retry layer can tell transient from fatal.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterable, Mapping
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import Any
from urllib.parse import quote

import aiohttp

from tarlift.client.session import Session
from tarlift.client.signing import authorization_header, signing_string
from tarlift.exceptions import (
    AuthenticationError,
    ConflictError,
    StoreError,
    TransientNetworkError,
)
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.client.http")

# Statuses worth another attempt
TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
AUTH_STATUSES = frozenset({401, 403})
CONFLICT_STATUSES = frozenset({409, 412})

Body = bytes | AsyncIterable[bytes] | None


@dataclass
class StoreResponse:
    """Status, headers (lower-cased names) and body of a store response."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.body)


def _error_details(body: bytes) -> tuple[str | None, str]:
    """Extract (code, message) from a JSON error body, falling back to text."""
    text = body.decode("utf-8", "replace").strip()
    try:
        payload = json.loads(text) if text else {}
    except ValueError:
        return None, text[:200]
    if isinstance(payload, dict):
        return payload.get("code"), str(payload.get("message", text[:200]))
    return None, text[:200]


def classify_response(method: str, path: str, response: StoreResponse) -> StoreError | AuthenticationError:
    """Map an error response to the exception the caller should see."""
    code, message = _error_details(response.body)
    summary = f"{method} {path}: {response.status} {code or ''} {message}".rstrip()

    if response.status in AUTH_STATUSES:
        return AuthenticationError(summary, details={"status": response.status, "code": code, "path": path})
    if response.status in TRANSIENT_STATUSES:
        return TransientNetworkError(summary, status=response.status, code=code, path=path)
    if response.status in CONFLICT_STATUSES:
        return ConflictError(summary, status=response.status, code=code, path=path)
    return StoreError(summary, status=response.status, code=code, path=path)


class SigningClient:
    """
    Sends signed requests through a Session.

    Example:
        ```python
        client = SigningClient(session)
        response = await client.send("HEAD", "/alice/stor/backup/test.txt")
        ```
    """

    def __init__(self, session: Session):
        self.session = session

    def _sign(self, date: str) -> str:
        signer = self.session.signer
        try:
            signature = signer.sign(signing_string(date))
            algorithm = signer.algorithm
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(f"request signing failed: {e}") from e
        return authorization_header(self.session.key_path, algorithm, signature)

    async def sign_headers(self, headers: Mapping[str, str] | None = None) -> dict[str, str]:
        """
        Return ``headers`` plus Date, Authorization and identity headers.

        Signing runs in a worker thread: agent signing is blocking socket I/O.
        """
        date = formatdate(usegmt=True)
        authorization = await asyncio.to_thread(self._sign, date)
        signed = {"Accept": "application/json", **(headers or {})}
        signed["Date"] = date
        signed["Authorization"] = authorization
        if self.session.role:
            signed["Role"] = self.session.role
        return signed

    def url_for(self, path: str) -> str:
        return self.session.url + quote(path, safe="/")

    async def send(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        body: Body = None,
    ) -> StoreResponse:
        """
        Send one signed request.

        Args:
            method: HTTP method
            path: Absolute store path (not URL-encoded)
            headers: Extra request headers
            body: Request body; async iterables are streamed

        Returns:
            StoreResponse for 1xx-3xx statuses

        Raises:
            AuthenticationError: Signing failed or the store rejected the signature
            TransientNetworkError: Connection failure, timeout, or retryable status
            ConflictError: 409/412 responses
            StoreError: Any other error status
        """
        request_headers = await self.sign_headers(headers)
        url = self.url_for(path)

        start_time = time.monotonic()
        try:
            async with self.session.http.request(method, url, headers=request_headers, data=body) as resp:
                payload = await resp.read()
                response = StoreResponse(
                    status=resp.status,
                    headers={k.lower(): v for k, v in resp.headers.items()},
                    body=payload,
                )
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"{method} {path}: timed out", path=path) from e
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as e:
            raise TransientNetworkError(f"{method} {path}: {type(e).__name__}: {e}", path=path) from e
        except aiohttp.ClientError as e:
            raise StoreError(f"{method} {path}: {type(e).__name__}: {e}", path=path) from e

        duration = time.monotonic() - start_time
        log_level = logger.warning if response.status >= 500 else logger.debug
        log_level(f"{method} {path} {response.status} {duration:.2f}s")

        if response.status >= 400:
            raise classify_response(method, path, response)
        return response
