"""
Programmatic API for tarlift.
"""

from __future__ import annotations

import contextlib
from pathlib import Path
from typing import BinaryIO

from tarlift.client.http import SigningClient
from tarlift.client.session import Session
from tarlift.client.signing import Signer
from tarlift.client.store import StoreClient
from tarlift.config.loader import TarliftConfig, build_signer, load_config
from tarlift.core.scheduler import RunResult, UploadScheduler
from tarlift.utils.async_utils import dual
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.api")


@dual
async def upload_archive(
    archive: str | Path | BinaryIO,
    destination: str,
    config: TarliftConfig | None = None,
    *,
    signer: Signer | None = None,
    fail_fast: bool = False,
) -> RunResult:
    """
    Upload a tar archive into the store under ``destination``.

    Works in both sync and async contexts.

    Args:
        archive: Path to a tar file, or a binary stream positioned at its start
        destination: Absolute store directory (e.g. "/alice/stor/backup")
        config: Settings (default: load_config() from the environment)
        signer: Signer to use instead of the one the config selects
        fail_fast: Stop after the first failed entry

    Returns:
        RunResult; call raise_for_status() to turn failures into exceptions

    Raises:
        ConfigurationError: Configuration is incomplete or invalid
        AuthenticationError: The signing key cannot be loaded

    Examples:
        # Sync usage
        result = upload_archive("backup.tar", "/alice/stor/backup")
        result.raise_for_status()

        # Async usage
        result = await upload_archive(stream, "/alice/stor/backup", config)
    """
    config = config or load_config()
    config.validate()
    signer = signer or build_signer(config)

    session = Session(
        config.url or "",
        config.user or "",
        signer,
        subuser=config.subuser,
        role=config.role,
        insecure=config.insecure,
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
        max_connections=config.concurrency * 2,
    )

    with contextlib.ExitStack() as stack:
        if isinstance(archive, (str, Path)):
            logger.info(f"Reading archive {archive}")
            stream: BinaryIO = stack.enter_context(open(archive, "rb"))
        else:
            stream = archive

        async with session:
            store = StoreClient(SigningClient(session), config.retry_policy())
            scheduler = UploadScheduler(
                store,
                concurrency=config.concurrency,
                conflict_policy=config.conflict_policy,
                strict=config.strict,
                fail_fast=fail_fast,
            )
            return await scheduler.run(stream, destination)
