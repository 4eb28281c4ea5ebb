"""
Environment variable substitution for configuration files.
"""

import os
import re
from collections.abc import Mapping
from typing import Any

_VAR_PATTERN = re.compile(r"\${([^}]+)}")


def resolve_config(config_data: dict[str, Any], env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """
    Substitute ``${VAR_NAME}`` placeholders throughout a config mapping.

    Unset variables are left as written so validation can report them.

    Args:
        config_data: Parsed configuration
        env: Variables to substitute from (default: os.environ)

    Returns:
        Resolved configuration
    """
    return _resolve_value(config_data, os.environ if env is None else env)


def _resolve_value(value: Any, env: Mapping[str, str]) -> Any:
    """Recursively resolve values in configuration."""
    if isinstance(value, dict):
        return {k: _resolve_value(v, env) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_value(item, env) for item in value]
    elif isinstance(value, str):
        return _VAR_PATTERN.sub(lambda m: env.get(m.group(1), m.group(0)), value)
    else:
        return value
