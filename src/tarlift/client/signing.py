"""
Request signers.

Both signers wrap a paramiko key (a key loaded from disk, or a key held by
the running ssh-agent) and expose the same capability::

    signer.sign(b"date: Tue, 20 Oct 2026 10:00:00 GMT") -> signature bytes

plus ``algorithm`` and ``key_id`` for the Authorization header. The HTTP
client never needs to know which one it was given.
"""

from __future__ import annotations

import base64
import hashlib
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

import paramiko
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from paramiko.message import Message
from paramiko.pkey import UnknownKeyType
from paramiko.ssh_exception import SSHException

from tarlift.exceptions import AuthenticationError
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.client.signing")

# ssh key type -> (http-signature algorithm, ssh signature algorithm to request)
_ALGORITHMS: dict[str, tuple[str, str | None]] = {
    "ssh-rsa": ("rsa-sha256", "rsa-sha2-256"),
    "ecdsa-sha2-nistp256": ("ecdsa-sha256", None),
    "ecdsa-sha2-nistp384": ("ecdsa-sha384", None),
    "ecdsa-sha2-nistp521": ("ecdsa-sha512", None),
}


def md5_fingerprint(key: paramiko.PKey) -> str:
    """Colon-separated hex MD5 fingerprint ("aa:bb:...")."""
    return ":".join(f"{b:02x}" for b in key.get_fingerprint())


def sha256_fingerprint(key: paramiko.PKey) -> str:
    """OpenSSH-style "SHA256:<base64>" fingerprint."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def key_matches(key: paramiko.PKey, key_id: str) -> bool:
    """Whether ``key_id`` names this key in either fingerprint format."""
    wanted = key_id.strip()
    if wanted.upper().startswith("MD5:"):
        wanted = wanted[4:]
    if wanted.startswith("SHA256:"):
        return wanted == sha256_fingerprint(key)
    return wanted.lower() == md5_fingerprint(key)


def http_algorithm(key: paramiko.PKey) -> str:
    try:
        return _ALGORITHMS[key.get_name()][0]
    except KeyError:
        raise AuthenticationError(f"unsupported key type for request signing: {key.get_name()}") from None


def ssh_sign(key: paramiko.PKey, data: bytes) -> bytes:
    """
    Sign ``data`` with a paramiko key and return the raw http-signature bytes.

    paramiko returns an SSH signature blob (algorithm name + signature);
    RSA signatures are used as-is, ECDSA (r, s) pairs are DER-encoded.
    """
    key_type = key.get_name()
    if key_type not in _ALGORITHMS:
        raise AuthenticationError(f"unsupported key type for request signing: {key_type}")
    _, ssh_algorithm = _ALGORITHMS[key_type]

    result = key.sign_ssh_data(data, ssh_algorithm) if ssh_algorithm else key.sign_ssh_data(data)
    # PKey returns a Message, AgentKey returns the encoded blob
    blob = Message(result.asbytes() if isinstance(result, Message) else result)
    blob.get_text()
    signature = blob.get_binary()

    if key_type.startswith("ecdsa-"):
        inner = Message(signature)
        return encode_dss_signature(inner.get_mpint(), inner.get_mpint())
    return signature


class Signer(ABC):
    """Signing capability shared by the private-key and agent strategies."""

    @property
    @abstractmethod
    def key_id(self) -> str:
        """Identifier placed in the Authorization keyId."""

    @property
    @abstractmethod
    def algorithm(self) -> str:
        """http-signature algorithm name, e.g. "rsa-sha256"."""

    @abstractmethod
    def sign(self, data: bytes) -> bytes:
        """
        Sign ``data``.

        Raises:
            AuthenticationError: The key is unusable or the agent is unreachable
        """

    def close(self) -> None:
        """Release any resources held by the signer."""


class PrivateKeySigner(Signer):
    """
    Signs in-process with key material loaded from disk.

    Examples:
        >>> signer = PrivateKeySigner.from_file("~/.ssh/id_rsa")
        >>> signer.algorithm
        'rsa-sha256'
    """

    def __init__(self, key: paramiko.PKey, key_id: str | None = None) -> None:
        if key_id and not key_matches(key, key_id):
            raise AuthenticationError(
                f"key id {key_id} does not match private key (fingerprint {md5_fingerprint(key)})"
            )
        self._key = key
        self._key_id = key_id or md5_fingerprint(key)
        self._algorithm = http_algorithm(key)

    @classmethod
    def from_file(cls, path: str | Path, passphrase: str | None = None, key_id: str | None = None) -> PrivateKeySigner:
        """
        Load a private key file (RSA or ECDSA, OpenSSH or PEM format).

        Raises:
            AuthenticationError: Missing, unreadable, encrypted or unsupported key
        """
        key_path = Path(os.path.expanduser(str(path)))
        try:
            key = paramiko.PKey.from_path(key_path, passphrase=passphrase.encode() if passphrase else None)
        except FileNotFoundError:
            raise AuthenticationError(f"private key not found: {key_path}") from None
        except OSError as e:
            raise AuthenticationError(f"cannot read private key {key_path}: {e}") from e
        except (SSHException, UnknownKeyType, ValueError, TypeError) as e:
            # TypeError: encrypted key and no passphrase
            raise AuthenticationError(f"cannot load private key {key_path}: {e}") from e
        logger.debug(f"Loaded {key.get_name()} key {md5_fingerprint(key)} from {key_path}")
        return cls(key, key_id=key_id)

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def sign(self, data: bytes) -> bytes:
        try:
            return ssh_sign(self._key, data)
        except AuthenticationError:
            raise
        except (SSHException, ValueError) as e:
            raise AuthenticationError(f"signing failed with key {self._key_id}: {e}") from e


class AgentSigner(Signer):
    """
    Delegates signing to the ssh-agent at ``SSH_AUTH_SOCK``.

    The agent is contacted on first use; the matching key is looked up once
    and reused. The agent socket is not safe for concurrent requests, so
    sign() is serialized behind a lock (callers run it in a worker thread).
    """

    def __init__(self, key_id: str, agent_factory: Callable[[], paramiko.Agent] = paramiko.Agent) -> None:
        if not key_id:
            raise AuthenticationError("agent signing requires a key id")
        self._key_id = key_id
        self._agent_factory = agent_factory
        self._agent: paramiko.Agent | None = None
        self._key: paramiko.PKey | None = None
        self._lock = threading.Lock()

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def algorithm(self) -> str:
        with self._lock:
            return http_algorithm(self._resolve_key())

    def _resolve_key(self) -> paramiko.PKey:
        if self._key is not None:
            return self._key

        try:
            self._agent = self._agent_factory()
            keys = self._agent.get_keys()
        except (SSHException, OSError) as e:
            raise AuthenticationError(f"ssh-agent unreachable: {e}") from e

        if not keys:
            raise AuthenticationError("ssh-agent has no keys (is SSH_AUTH_SOCK set?)")

        for key in keys:
            if key_matches(key, self._key_id):
                logger.debug(f"Using {key.get_name()} key {self._key_id} from ssh-agent")
                self._key = key
                return key

        raise AuthenticationError(f"key {self._key_id} not found in ssh-agent ({len(keys)} keys loaded)")

    def sign(self, data: bytes) -> bytes:
        with self._lock:
            key = self._resolve_key()
            try:
                return ssh_sign(key, data)
            except AuthenticationError:
                raise
            except (SSHException, OSError, ValueError) as e:
                raise AuthenticationError(f"ssh-agent refused to sign with {self._key_id}: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._agent is not None:
                self._agent.close()
                self._agent = None
            self._key = None


def signing_string(date: str) -> bytes:
    """Canonical string covered by the signature."""
    return f"date: {date}".encode("utf-8")


def key_path_for(user: str, key_id: str, subuser: str | None = None) -> str:
    """keyId value: /<user>/keys/<id> or /<user>/users/<subuser>/keys/<id>."""
    if subuser:
        return f"/{user}/users/{subuser}/keys/{key_id}"
    return f"/{user}/keys/{key_id}"


def authorization_header(key_path: str, algorithm: str, signature: bytes) -> str:
    """Build the ``Authorization: Signature ...`` header value."""
    encoded = base64.b64encode(signature).decode("ascii")
    return f'Signature keyId="{key_path}",algorithm="{algorithm}",headers="date",signature="{encoded}"'
