"""
Store session: endpoint, identity, signer and the pooled HTTP connection.
"""

from __future__ import annotations

import ssl
from typing import Any

import aiohttp

from tarlift import __version__
from tarlift.client.signing import Signer, key_path_for
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.client.session")

# Top-level areas under /<user> exist for every account and cannot be created
TOP_LEVEL_AREAS = ("stor", "public", "jobs", "reports", "uploads")


class Session:
    """
    Run-scoped connection state shared read-only by all workers.

    Example:
        ```python
        signer = PrivateKeySigner.from_file("~/.ssh/id_rsa")
        async with Session("https://store.example.com", "alice", signer) as session:
            client = SigningClient(session)
            response = await client.send("HEAD", "/alice/stor")
        ```
    """

    def __init__(
        self,
        url: str,
        user: str,
        signer: Signer,
        *,
        subuser: str | None = None,
        role: str | None = None,
        insecure: bool = False,
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        max_connections: int = 16,
    ):
        """
        Initialize session.

        Args:
            url: Store base URL (e.g., "https://us-east.manta.example.com")
            user: Account login; requests are signed as this user
            signer: Signer shared by every request in the run
            subuser: Optional sub-user login within the account
            role: Optional role(s) to assume, sent as the Role header
            insecure: Disable TLS certificate verification (test/dev only)
            connect_timeout: Seconds allowed to establish a connection
            read_timeout: Seconds allowed between reads of a response
            max_connections: Size of the connection pool
        """
        self.url = url.rstrip("/")
        self.user = user
        self.signer = signer
        self.subuser = subuser
        self.role = role
        self.insecure = insecure
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_connections = max_connections
        self.user_agent = f"tarlift/{__version__}"

        self._http: aiohttp.ClientSession | None = None

    @property
    def key_path(self) -> str:
        """keyId used in the Authorization header."""
        return key_path_for(self.user, self.signer.key_id, self.subuser)

    @property
    def home(self) -> str:
        return f"/{self.user}"

    def top_level_directories(self) -> list[str]:
        """Directories every account has; never created by clients."""
        return ["/", self.home] + [f"{self.home}/{area}" for area in TOP_LEVEL_AREAS]

    @property
    def http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            raise RuntimeError("session is not open; use 'async with Session(...)'")
        return self._http

    async def open(self) -> None:
        if self._http is not None and not self._http.closed:
            return
        ssl_context: Any = False if self.insecure else ssl.create_default_context()
        if self.insecure:
            logger.warning("TLS certificate verification is disabled")
        connector = aiohttp.TCPConnector(limit=self.max_connections, ssl=ssl_context)
        timeout = aiohttp.ClientTimeout(
            total=None,
            connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )
        self._http = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={"User-Agent": self.user_agent},
        )

    async def close(self) -> None:
        """Release pooled connections and the signer."""
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None
        self.signer.close()

    async def __aenter__(self) -> Session:
        await self.open()
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"Session(url='{self.url}', user='{self.user}', key='{self.signer.key_id}')"
