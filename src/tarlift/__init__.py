"""
tarlift - Replicate tar archives into a remote hierarchical object store.

Streams a tar archive, recreates its directories remotely and uploads its
files concurrently over signed HTTP requests.
"""

__version__ = "0.1.0"

# Archive parsing
from tarlift.archive import ArchiveEntry, ArchiveReader, EntryKind

# Store access
from tarlift.client import (
    AgentSigner,
    ConflictPolicy,
    ObjectInfo,
    PrivateKeySigner,
    Session,
    Signer,
    SigningClient,
    StoreClient,
)

# Configuration
from tarlift.config import TarliftConfig, build_signer, load_config

# Programmatic API
from tarlift.core.api import upload_archive
from tarlift.core.directories import DirectoryEnsurer, DirectorySet
from tarlift.core.paths import PathMapper, RemotePath
from tarlift.core.retry import RetryManager, RetryPolicy
from tarlift.core.scheduler import EntryOutcome, RunResult, UploadScheduler

# Exceptions
from tarlift.exceptions import (
    ArchiveFormatError,
    ArchiveStateError,
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    PartialRunError,
    PathError,
    RetryExhaustedError,
    StoreError,
    TarliftError,
    TransientNetworkError,
    UnsupportedEntryError,
)

# Logging utilities
from tarlift.utils.logging import get_logger, setup_logging

__all__ = [
    "__version__",
    # Programmatic API
    "upload_archive",
    "UploadScheduler",
    "RunResult",
    "EntryOutcome",
    # Archive
    "ArchiveReader",
    "ArchiveEntry",
    "EntryKind",
    # Paths and directories
    "PathMapper",
    "RemotePath",
    "DirectoryEnsurer",
    "DirectorySet",
    # Store
    "Session",
    "Signer",
    "PrivateKeySigner",
    "AgentSigner",
    "SigningClient",
    "StoreClient",
    "ObjectInfo",
    "ConflictPolicy",
    "RetryPolicy",
    "RetryManager",
    # Configuration
    "TarliftConfig",
    "load_config",
    "build_signer",
    # Exceptions
    "TarliftError",
    "ConfigurationError",
    "ArchiveFormatError",
    "ArchiveStateError",
    "PathError",
    "UnsupportedEntryError",
    "AuthenticationError",
    "StoreError",
    "TransientNetworkError",
    "ConflictError",
    "RetryExhaustedError",
    "PartialRunError",
    # Logging
    "get_logger",
    "setup_logging",
]
