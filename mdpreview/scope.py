"""Scoped file access and access bookmarks.

Sandboxed hosts grant access to files outside the application's normal
boundary only between an explicit *start* and *stop*.  This module
models that as an :class:`AccessProvider` plus two guards that always
pair every successful start with a stop:

- :func:`scoped_access`: a context manager for short operations
  (reading one image, copying one dropped file).
- :class:`HeldScope`: a long-lived hold released explicitly, used by
  the sidecar manager for the lifetime of a document configuration.

Bookmarks are opaque blobs that let a provider re-locate a previously
granted file later.  They are a pure optimization; losing them is safe.

:class:`FilesystemAccess` is the provider for unsandboxed hosts: access
is granted when the OS reports the path readable, and bookmarks record
the file's device/inode so moves are detected as stale.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

_log = logging.getLogger("scope")


class BookmarkError(Exception):
    """A bookmark could not be created or resolved."""


@runtime_checkable
class AccessProvider(Protocol):
    """Host-specific access grants for paths outside the sandbox."""

    def start(self, path: Path) -> bool:
        """Begin access to *path*; return whether access was granted."""
        ...

    def stop(self, path: Path) -> None:
        """End access previously granted by :meth:`start`."""
        ...

    def create_bookmark(self, path: Path) -> bytes:
        """Return an opaque bookmark for *path* or raise :class:`BookmarkError`."""
        ...

    def resolve_bookmark(self, bookmark: bytes) -> tuple[Path, bool]:
        """Return ``(path, is_stale)`` or raise :class:`BookmarkError`."""
        ...


class FilesystemAccess:
    """Access provider backed by plain filesystem permissions."""

    def start(self, path: Path) -> bool:
        return os.access(path, os.R_OK)

    def stop(self, path: Path) -> None:
        pass

    def create_bookmark(self, path: Path) -> bytes:
        try:
            st = path.stat()
        except OSError as e:
            raise BookmarkError(f"cannot bookmark {path}: {e}") from e
        record = {"path": str(path), "dev": st.st_dev, "ino": st.st_ino}
        return json.dumps(record).encode("utf-8")

    def resolve_bookmark(self, bookmark: bytes) -> tuple[Path, bool]:
        try:
            record = json.loads(bookmark.decode("utf-8"))
            path = Path(record["path"])
            dev, ino = record["dev"], record["ino"]
        except (ValueError, KeyError, TypeError) as e:
            raise BookmarkError(f"malformed bookmark: {e}") from e
        try:
            st = path.stat()
        except OSError as e:
            raise BookmarkError(f"bookmarked file is gone: {path}") from e
        is_stale = (st.st_dev, st.st_ino) != (dev, ino)
        return path, is_stale


@contextmanager
def scoped_access(provider: AccessProvider, path: Path) -> Iterator[bool]:
    """Hold access to *path* for the duration of the ``with`` block.

    Yields whether access was granted.  A granted scope is stopped on
    every exit path, including exceptions and task cancellation.
    """
    granted = provider.start(path)
    try:
        yield granted
    finally:
        if granted:
            provider.stop(path)


class HeldScope:
    """Long-lived access to a set of paths, released all at once."""

    def __init__(self, provider: AccessProvider) -> None:
        self._provider = provider
        self._held: list[Path] = []

    @property
    def held(self) -> tuple[Path, ...]:
        """Paths currently held, in acquisition order."""
        return tuple(self._held)

    def acquire(self, path: Path) -> bool:
        """Start access to *path* and remember it if granted."""
        if self._provider.start(path):
            self._held.append(path)
            return True
        _log.debug("Access to %s was not granted", path)
        return False

    def release(self) -> None:
        """Stop every held path (most recent first)."""
        while self._held:
            self._provider.stop(self._held.pop())
