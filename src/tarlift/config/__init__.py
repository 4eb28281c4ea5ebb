"""
Configuration management: YAML file, environment and CLI overrides.
"""

from tarlift.config.loader import ENV_VARS, TarliftConfig, build_signer, load_config
from tarlift.config.resolver import resolve_config

__all__ = [
    "ENV_VARS",
    "TarliftConfig",
    "build_signer",
    "load_config",
    "resolve_config",
]
