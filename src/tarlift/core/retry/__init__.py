"""
Retry framework for transient store failures.
"""

from tarlift.core.retry.manager import RetryManager
from tarlift.core.retry.policy import (
    DEFAULT_RETRY_POLICY,
    NO_RETRY_POLICY,
    RetryPolicy,
    RetryState,
)

__all__ = [
    "RetryPolicy",
    "RetryState",
    "DEFAULT_RETRY_POLICY",
    "NO_RETRY_POLICY",
    "RetryManager",
]
