"""
Configuration loading.

Settings are layered, later layers winning:

    defaults <- YAML file (optional) <- environment variables <- overrides

The YAML file holds the same keys as TarliftConfig, e.g.::

    url: https://us-east.manta.example.com
    user: alice
    key_id: ${MANTA_KEY_ID}
    concurrency: 8
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from tarlift.client.signing import AgentSigner, PrivateKeySigner, Signer
from tarlift.client.store import ConflictPolicy
from tarlift.config.resolver import resolve_config
from tarlift.core.retry import NO_RETRY_POLICY, RetryPolicy
from tarlift.exceptions import ConfigurationError
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.config.loader")

DEFAULT_KEY_PATH = "~/.ssh/id_rsa"

# Environment variable -> config field
ENV_VARS = {
    "MANTA_URL": "url",
    "MANTA_USER": "user",
    "MANTA_SUBUSER": "subuser",
    "MANTA_ROLE": "role",
    "MANTA_KEY_ID": "key_id",
    "TARLIFT_KEY_PATH": "key_path",
    "TARLIFT_USE_AGENT": "use_agent",
    "MANTA_TLS_INSECURE": "insecure",
    "TARLIFT_CONNECT_TIMEOUT": "connect_timeout",
    "TARLIFT_READ_TIMEOUT": "read_timeout",
    "TARLIFT_CONCURRENCY": "concurrency",
    "TARLIFT_MAX_RETRIES": "max_retries",
    "TARLIFT_LOG_LEVEL": "log_level",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class TarliftConfig:
    """Settings for one upload run."""

    url: str | None = None
    user: str | None = None
    subuser: str | None = None
    role: str | None = None
    key_id: str | None = None
    key_path: str | None = None
    use_agent: bool = False
    insecure: bool = False
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    concurrency: int = 4
    max_retries: int = 3
    conflict_policy: ConflictPolicy = ConflictPolicy.OVERWRITE
    strict: bool = False
    log_level: str = "INFO"

    def validate(self) -> None:
        """
        Check that the configuration can drive a run.

        Raises:
            ConfigurationError: Listing every problem found
        """
        errors = []
        if not self.url:
            errors.append("store URL is not set (MANTA_URL or 'url')")
        elif not self.url.startswith(("http://", "https://")):
            errors.append(f"store URL must start with http:// or https://, got '{self.url}'")
        if not self.user:
            errors.append("user is not set (MANTA_USER or 'user')")
        if self.concurrency < 1:
            errors.append(f"concurrency must be >= 1, got {self.concurrency}")
        if self.max_retries < 0:
            errors.append(f"max_retries must be >= 0, got {self.max_retries}")
        if self.connect_timeout <= 0 or self.read_timeout <= 0:
            errors.append("timeouts must be > 0")
        if self.use_agent and not self.key_id:
            errors.append("agent signing requires a key id (MANTA_KEY_ID or 'key_id')")

        if errors:
            raise ConfigurationError("Invalid configuration:\n  " + "\n  ".join(errors))

    def retry_policy(self) -> RetryPolicy:
        if self.max_retries == 0:
            return NO_RETRY_POLICY
        return RetryPolicy(max_attempts=self.max_retries)


_FIELD_TYPES = {f.name: f.type for f in fields(TarliftConfig)}


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw YAML/env value to the field's type."""
    if value is None:
        return None
    kind = _FIELD_TYPES[name]
    try:
        if kind == "bool":
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            raise ValueError(f"expected a boolean, got '{value}'")
        if kind == "int":
            if isinstance(value, bool):
                raise ValueError(f"expected an integer, got '{value}'")
            return int(value)
        if kind == "float":
            return float(value)
        if kind == "ConflictPolicy":
            return ConflictPolicy(str(value).lower())
        return str(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for '{name}': {e}") from e


def _read_yaml(config_file: Path, env: Mapping[str, str]) -> dict[str, Any]:
    if not config_file.is_file():
        raise ConfigurationError(f"Configuration file not found: {config_file}")

    try:
        with open(config_file) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark is not None else ""
        raise ConfigurationError(f"Error parsing {config_file}{where}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration must be a mapping, got {type(data).__name__}",
            details={"file": str(config_file)},
        )

    data = {str(k).replace("-", "_"): v for k, v in resolve_config(data, env).items()}
    unknown = sorted(set(data) - set(_FIELD_TYPES))
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys in {config_file}: {', '.join(unknown)}")
    return data


def load_config(
    config_file: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    validate: bool = True,
) -> TarliftConfig:
    """
    Load tarlift configuration.

    Args:
        config_file: Optional YAML file
        env: Environment to read (default: os.environ)
        overrides: Explicit values (CLI flags); None values are ignored
        validate: Run TarliftConfig.validate() on the result

    Returns:
        TarliftConfig with all layers merged

    Raises:
        ConfigurationError: Unreadable file, bad value, or failed validation
    """
    env = os.environ if env is None else env
    values: dict[str, Any] = {}

    if config_file is not None:
        values.update(_read_yaml(Path(config_file).expanduser(), env))

    for var, name in ENV_VARS.items():
        if env.get(var):
            values[name] = env[var]

    for name, value in (overrides or {}).items():
        if name not in _FIELD_TYPES:
            raise ConfigurationError(f"Unknown configuration key: {name}")
        if value is not None:
            values[name] = value

    config = TarliftConfig(**{name: _coerce(name, value) for name, value in values.items()})
    if validate:
        config.validate()
    return config


def build_signer(config: TarliftConfig) -> Signer:
    """
    Pick the signer for a configuration.

    An explicit key path wins; otherwise the agent is used when asked for
    or when a key id is configured; otherwise the default key file.

    Raises:
        AuthenticationError: The key file cannot be loaded
    """
    if config.key_path:
        return PrivateKeySigner.from_file(config.key_path, key_id=config.key_id)
    if config.use_agent or config.key_id:
        logger.debug(f"Signing with ssh-agent key {config.key_id}")
        return AgentSigner(config.key_id or "")
    return PrivateKeySigner.from_file(DEFAULT_KEY_PATH)
