"""
Streaming tar reader.

Parses a single-pass byte stream into archive entries one at a time. The
reader is a small state machine::

    HEADER -> CONTENT[0..size) -> PADDING -> HEADER | END

Only what ingestion needs is interpreted: regular files and directories.
pax (``x``/``g``) and GNU long-name (``L``/``K``) metadata records are
folded into the entry that follows them. Every other entry type is
surfaced as ``EntryKind.UNSUPPORTED`` and its data skipped.

Tar header layout (POSIX ustar)::

    0-99     name          257-262  magic "ustar\\0" / "ustar "
    100-107  mode          263-264  version
    108-115  uid           265-296  uname
    116-123  gid           297-328  gname
    124-135  size          329-344  devmajor / devminor
    136-147  mtime         345-499  prefix (ustar only)
    148-155  checksum
    156      typeflag
    157-256  linkname
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, StrEnum
from typing import BinaryIO

from tarlift.exceptions import ArchiveFormatError, ArchiveStateError
from tarlift.utils.logging import get_logger

logger = get_logger("tarlift.archive.reader")

BLOCK_SIZE = 512
ZERO_BLOCK = b"\x00" * BLOCK_SIZE

# Largest size we accept from a header (signed 64-bit)
MAX_ENTRY_SIZE = 2**63 - 1

# pax / GNU metadata payloads are held in memory
MAX_METADATA_SIZE = 1024 * 1024

_SKIP_CHUNK = 64 * 1024

FILE_TYPES = frozenset({"0", "\x00", "7"})
DIRECTORY_TYPE = "5"
PAX_LOCAL = "x"
PAX_GLOBAL = "g"
GNU_LONGNAME = "L"
GNU_LONGLINK = "K"
METADATA_TYPES = frozenset({PAX_LOCAL, PAX_GLOBAL, GNU_LONGNAME, GNU_LONGLINK})

# pax records written by GNU tar for sparse files
GNU_SPARSE_PREFIX = "GNU.sparse."


class EntryKind(StrEnum):
    """What an archive entry describes."""

    FILE = "file"
    DIRECTORY = "directory"
    UNSUPPORTED = "unsupported"


class _State(Enum):
    HEADER = "header"
    CONTENT = "content"
    PADDING = "padding"
    END = "end"


class EntryContent:
    """
    Lazy view over one file entry's data.

    Reads never go past the declared size; the reader refuses to move to the
    next header until this is exhausted or ``skip()`` is called.
    """

    def __init__(self, reader: ArchiveReader, size: int) -> None:
        self._reader = reader
        self.size = size

    @property
    def remaining(self) -> int:
        return self._reader._content_remaining(self)

    def read(self, size: int = -1) -> bytes:
        return self._reader._read_content(self, size)

    def skip(self) -> None:
        """Discard whatever has not been read yet."""
        self._reader._discard_content(self)


@dataclass
class ArchiveEntry:
    """A single tar entry as seen by the ingestion pipeline."""

    path: str
    kind: EntryKind
    size: int
    mode: int
    mtime: datetime
    typeflag: str = "0"
    linkname: str = ""
    offset: int = 0
    content: EntryContent | None = field(default=None, repr=False)

    @property
    def is_file(self) -> bool:
        return self.kind is EntryKind.FILE

    @property
    def is_directory(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    def skip(self) -> None:
        if self.content is not None:
            self.content.skip()


@dataclass
class _Header:
    name: str
    mode: int
    size: int
    mtime: float
    typeflag: str
    linkname: str
    sparse: bool = False


def _cstr(field_bytes: bytes) -> str:
    """Decode a NUL-terminated header string."""
    raw = field_bytes.split(b"\x00", 1)[0]
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def _parse_number(field_bytes: bytes, name: str, offset: int) -> int:
    """
    Parse a numeric header field.

    Octal text (NUL/space padded) or GNU base-256 when the high bit of the
    first byte is set.
    """
    if field_bytes[0] & 0x80:
        if field_bytes[0] == 0xFF:
            raise ArchiveFormatError(f"negative {name} field in header", offset=offset)
        value = int.from_bytes(bytes([field_bytes[0] & 0x7F]) + field_bytes[1:], "big")
    else:
        text = field_bytes.split(b"\x00", 1)[0].strip(b" ")
        if not text:
            return 0
        try:
            value = int(text, 8)
        except ValueError:
            raise ArchiveFormatError(f"invalid {name} field {text!r} in header", offset=offset) from None
    if value > MAX_ENTRY_SIZE:
        raise ArchiveFormatError(f"{name} field overflows ({value})", offset=offset)
    return value


def _verify_checksum(block: bytes, offset: int) -> None:
    stored = _parse_number(block[148:156], "checksum", offset)
    blank = block[:148] + b" " * 8 + block[156:]
    unsigned = sum(blank)
    signed = sum(b - 256 if b > 127 else b for b in blank)
    if stored not in (unsigned, signed):
        raise ArchiveFormatError(
            f"header checksum mismatch (stored {stored}, computed {unsigned})",
            offset=offset,
        )


def _parse_header(block: bytes, offset: int) -> _Header:
    _verify_checksum(block, offset)

    name = _cstr(block[0:100])
    # GNU headers ("ustar  \0") reuse the prefix area for other fields
    if block[257:263] == b"ustar\x00":
        prefix = _cstr(block[345:500])
        if prefix:
            name = f"{prefix}/{name}"

    typeflag = chr(block[156]) if block[156] else "\x00"
    return _Header(
        name=name,
        mode=_parse_number(block[100:108], "mode", offset) & 0o7777,
        size=_parse_number(block[124:136], "size", offset),
        mtime=float(_parse_number(block[136:148], "mtime", offset)),
        typeflag=typeflag,
        linkname=_cstr(block[157:257]),
    )


def parse_pax_records(data: bytes, offset: int = 0) -> dict[str, str]:
    """
    Parse a pax extended header payload.

    Records have the form ``"<len> <key>=<value>\\n"`` where ``len`` counts
    the whole record including itself.
    """
    records: dict[str, str] = {}
    pos = 0
    while pos < len(data):
        if data[pos:].strip(b"\x00") == b"":
            break
        space = data.find(b" ", pos)
        if space == -1:
            raise ArchiveFormatError("malformed pax record", offset=offset)
        try:
            length = int(data[pos:space])
        except ValueError:
            raise ArchiveFormatError("malformed pax record length", offset=offset) from None
        end = pos + length
        if length <= 0 or end > len(data) or data[end - 1 : end] != b"\n":
            raise ArchiveFormatError("truncated pax record", offset=offset)
        key, sep, value = data[space + 1 : end - 1].partition(b"=")
        if not sep:
            raise ArchiveFormatError("pax record without '='", offset=offset)
        records[key.decode("utf-8", "replace")] = value.decode("utf-8", "replace")
        pos = end
    return records


class ArchiveReader:
    """
    Forward-only reader over a tar byte stream.

    Usage::

        reader = ArchiveReader(stream)
        for entry in reader:
            if entry.is_file:
                data = entry.content.read()

    File content must be read to the end or skipped before the next entry is
    requested; otherwise ``ArchiveStateError`` is raised. Directory and
    unsupported entries need no attention.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._state = _State.HEADER
        self._offset = 0
        self._remaining = 0
        self._padding = 0
        self._current: EntryContent | None = None
        self._global_pax: dict[str, str] = {}
        self._pending_pax: dict[str, str] = {}
        self._pending_name: str | None = None
        self._pending_link: str | None = None
        self.entries_read = 0

    @property
    def offset(self) -> int:
        """Bytes consumed from the underlying stream so far."""
        return self._offset

    @property
    def at_end(self) -> bool:
        return self._state is _State.END

    def __iter__(self) -> Iterator[ArchiveEntry]:
        return self

    def __next__(self) -> ArchiveEntry:
        entry = self.next_entry()
        if entry is None:
            raise StopIteration
        return entry

    # --- low-level I/O ---------------------------------------------------

    def _read_exact(self, size: int, what: str) -> bytes:
        chunks = []
        missing = size
        while missing > 0:
            chunk = self._stream.read(missing)
            if not chunk:
                raise ArchiveFormatError(
                    f"unexpected end of archive while reading {what} "
                    f"({size - missing} of {size} bytes)",
                    offset=self._offset,
                )
            chunks.append(chunk)
            missing -= len(chunk)
            self._offset += len(chunk)
        return b"".join(chunks)

    def _discard(self, size: int, what: str) -> None:
        while size > 0:
            step = min(size, _SKIP_CHUNK)
            self._read_exact(step, what)
            size -= step

    # --- content ---------------------------------------------------------

    def _check_owner(self, content: EntryContent) -> None:
        if content is not self._current:
            raise ArchiveStateError("content stream belongs to an earlier entry", offset=self._offset)

    def _content_remaining(self, content: EntryContent) -> int:
        return self._remaining if content is self._current and self._state is _State.CONTENT else 0

    def _read_content(self, content: EntryContent, size: int) -> bytes:
        self._check_owner(content)
        if self._state is not _State.CONTENT:
            return b""
        if size < 0 or size > self._remaining:
            size = self._remaining
        data = b""
        if size:
            try:
                data = self._read_exact(size, "entry content")
            except ArchiveFormatError as e:
                raise ArchiveFormatError(
                    f"content shorter than declared size: {e.message}", offset=self._offset
                ) from None
            self._remaining -= size
        if self._remaining == 0:
            self._state = _State.PADDING
        return data

    def _discard_content(self, content: EntryContent) -> None:
        self._check_owner(content)
        if self._state is _State.CONTENT:
            self._discard(self._remaining, "entry content")
            self._remaining = 0
            self._state = _State.PADDING

    def _finish_entry(self) -> None:
        """Advance from CONTENT/PADDING back to HEADER."""
        if self._state is _State.CONTENT:
            if self._current is not None:
                raise ArchiveStateError(
                    f"{self._remaining} bytes of file content left unread; read or skip() it first",
                    offset=self._offset,
                )
            self._discard(self._remaining, "entry content")
            self._remaining = 0
            self._state = _State.PADDING
        if self._state is _State.PADDING:
            self._discard(self._padding, "padding")
            self._padding = 0
            self._current = None
            self._state = _State.HEADER

    # --- headers ---------------------------------------------------------

    def _read_metadata(self, header: _Header, offset: int) -> None:
        if header.size > MAX_METADATA_SIZE:
            raise ArchiveFormatError(
                f"metadata record of {header.size} bytes exceeds limit",
                offset=offset,
            )
        payload = self._read_exact(header.size, "metadata record")
        self._discard(-header.size % BLOCK_SIZE, "padding")

        if header.typeflag == PAX_LOCAL:
            self._pending_pax.update(parse_pax_records(payload, offset))
        elif header.typeflag == PAX_GLOBAL:
            self._global_pax.update(parse_pax_records(payload, offset))
        elif header.typeflag == GNU_LONGNAME:
            self._pending_name = _cstr(payload)
        elif header.typeflag == GNU_LONGLINK:
            self._pending_link = _cstr(payload)

    def _apply_metadata(self, header: _Header, offset: int) -> _Header:
        pax = {**self._global_pax, **self._pending_pax}
        if self._pending_name is not None:
            header.name = self._pending_name
        if self._pending_link is not None:
            header.linkname = self._pending_link
        if "path" in pax:
            header.name = pax["path"]
        if "linkpath" in pax:
            header.linkname = pax["linkpath"]
        if any(key.startswith(GNU_SPARSE_PREFIX) for key in pax):
            # Data holds a sparse map, not the file; 1.0 archives also rename it
            header.sparse = True
            header.name = pax.get("GNU.sparse.name", header.name)
        try:
            if "size" in pax:
                header.size = int(pax["size"])
            if "mtime" in pax:
                header.mtime = float(pax["mtime"])
        except ValueError:
            raise ArchiveFormatError("invalid numeric pax record", offset=offset) from None
        if header.size < 0 or header.size > MAX_ENTRY_SIZE:
            raise ArchiveFormatError(f"size field overflows ({header.size})", offset=offset)

        self._pending_pax = {}
        self._pending_name = None
        self._pending_link = None
        return header

    def _read_header_block(self) -> bytes | None:
        """Return the next header block, or None at the end-of-archive marker."""
        block = self._read_exact(BLOCK_SIZE, "header")
        if block != ZERO_BLOCK:
            return block
        second = self._read_exact(BLOCK_SIZE, "end-of-archive marker")
        if second != ZERO_BLOCK:
            raise ArchiveFormatError("single zero block inside archive", offset=self._offset - BLOCK_SIZE)
        return None

    def next_entry(self) -> ArchiveEntry | None:
        """
        Advance to the next entry.

        Returns:
            The next ArchiveEntry, or None once the end-of-archive marker is read

        Raises:
            ArchiveFormatError: Bad checksum, truncated stream, or oversized field
            ArchiveStateError: The previous file's content was not consumed
        """
        if self._state is _State.END:
            return None
        self._finish_entry()

        while True:
            offset = self._offset
            block = self._read_header_block()
            if block is None:
                self._state = _State.END
                logger.debug(f"End of archive after {self.entries_read} entries ({self._offset} bytes)")
                return None

            header = _parse_header(block, offset)
            if header.typeflag in METADATA_TYPES:
                self._read_metadata(header, offset)
                continue
            header = self._apply_metadata(header, offset)
            break

        if header.sparse:
            kind = EntryKind.UNSUPPORTED
        elif header.typeflag in FILE_TYPES and not (header.typeflag == "\x00" and header.name.endswith("/")):
            kind = EntryKind.FILE
        elif header.typeflag == DIRECTORY_TYPE or header.typeflag == "\x00":
            kind = EntryKind.DIRECTORY
        else:
            kind = EntryKind.UNSUPPORTED

        try:
            mtime = datetime.fromtimestamp(header.mtime, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ArchiveFormatError(f"mtime out of range ({header.mtime})", offset=offset) from None

        entry = ArchiveEntry(
            path=header.name,
            kind=kind,
            size=header.size if kind is EntryKind.FILE else 0,
            mode=header.mode,
            mtime=mtime,
            typeflag=header.typeflag,
            linkname=header.linkname,
            offset=offset,
        )

        # Hard links and symlinks declare no data; anything else that does
        # is skipped by _finish_entry on the next call
        self._remaining = header.size if header.typeflag not in ("1", "2") else 0
        self._padding = -self._remaining % BLOCK_SIZE
        self._state = _State.CONTENT if self._remaining else _State.PADDING

        if kind is EntryKind.FILE:
            content = EntryContent(self, header.size)
            self._current = content
            entry.content = content
        else:
            self._current = None

        self.entries_read += 1
        return entry
