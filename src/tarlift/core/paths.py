"""
Remote path mapping.

Maps intra-archive paths onto normalized absolute paths under a
destination directory in the store.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass

from tarlift.exceptions import PathError


@dataclass(frozen=True)
class RemotePath:
    """
    Normalized absolute store path.

    ``path`` never has a trailing slash (except the root "/"); directories
    render with one via ``str()`` so they stay distinct from same-named
    objects.
    """

    path: str
    is_directory: bool = False

    def __post_init__(self) -> None:
        if not self.path.startswith("/"):
            raise ValueError(f"remote path must be absolute: {self.path!r}")
        if self.path != "/" and (self.path.endswith("/") or "//" in self.path):
            raise ValueError(f"remote path is not normalized: {self.path!r}")
        if ".." in self.path.split("/") or "." in self.path.split("/"):
            raise ValueError(f"remote path is not normalized: {self.path!r}")

    @classmethod
    def directory(cls, path: str) -> RemotePath:
        return cls(normalize_remote(path), is_directory=True)

    def __str__(self) -> str:
        if self.is_directory and self.path != "/":
            return self.path + "/"
        return self.path

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def parent(self) -> RemotePath:
        return RemotePath(posixpath.dirname(self.path), is_directory=True)

    def ancestors(self) -> list[RemotePath]:
        """
        Directories that must exist before this path, root to leaf.

        A directory includes itself as the last element.
        """
        parts = [p for p in self.path.split("/") if p]
        if not self.is_directory:
            parts = parts[:-1]
        return [RemotePath("/" + "/".join(parts[:i]), is_directory=True) for i in range(1, len(parts) + 1)]


def normalize_remote(path: str) -> str:
    """Normalize an absolute store path ("/a//b/./c/" -> "/a/b/c")."""
    if not path.startswith("/"):
        raise PathError(path, "destination must be an absolute path")
    if "\x00" in path:
        raise PathError(path, "contains a NUL byte")
    normalized = posixpath.normpath(path)
    # normpath keeps a leading "//"
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized


class PathMapper:
    """
    Resolves archive entry paths under a destination root.

    Examples:
        >>> mapper = PathMapper("/admin/stor/backup")
        >>> str(mapper.map("./subdir1/", is_directory=True))
        '/admin/stor/backup/subdir1/'
        >>> str(mapper.map("subdir1/test.txt"))
        '/admin/stor/backup/subdir1/test.txt'
    """

    def __init__(self, destination_root: str) -> None:
        self.root = RemotePath.directory(destination_root)

    def map(self, intra_path: str, is_directory: bool = False) -> RemotePath:
        """
        Map an intra-archive path to a RemotePath.

        Args:
            intra_path: Path as recorded in the archive header
            is_directory: Whether the entry is a directory

        Returns:
            RemotePath under the destination root

        Raises:
            PathError: The path is absolute, escapes the root, or is empty for a file
        """
        if "\x00" in intra_path:
            raise PathError(intra_path, "contains a NUL byte")
        if intra_path.startswith("/"):
            raise PathError(intra_path, "absolute paths are not allowed")

        parts: list[str] = []
        for segment in intra_path.split("/"):
            if segment in ("", "."):
                continue
            if segment == "..":
                if not parts:
                    raise PathError(intra_path, "escapes the destination directory")
                parts.pop()
                continue
            parts.append(segment)

        if not parts:
            if is_directory:
                return self.root
            raise PathError(intra_path, "empty file path")

        base = self.root.path.rstrip("/")
        return RemotePath(base + "/" + "/".join(parts), is_directory=is_directory)
