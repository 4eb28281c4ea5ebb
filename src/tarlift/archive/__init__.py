"""
Streaming tar parsing for ingestion.
"""

from tarlift.archive.reader import (
    BLOCK_SIZE,
    ArchiveEntry,
    ArchiveReader,
    EntryContent,
    EntryKind,
    parse_pax_records,
)

__all__ = [
    "BLOCK_SIZE",
    "ArchiveEntry",
    "ArchiveReader",
    "EntryContent",
    "EntryKind",
    "parse_pax_records",
]
