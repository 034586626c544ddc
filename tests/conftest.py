"""Shared test fixtures and helpers for mdpreview tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pymupdf

from mdpreview.scope import BookmarkError


def make_png(width: int = 4, height: int = 4) -> bytes:
    """Encode a solid white RGB image of the given size as PNG bytes."""
    pix = pymupdf.Pixmap(pymupdf.csRGB, pymupdf.IRect(0, 0, width, height), False)
    pix.clear_with(255)
    return pix.tobytes("png")


def write_png(path: Path, width: int = 4, height: int = 4) -> Path:
    """Write a PNG to *path* (creating parent directories) and return it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(make_png(width, height))
    return path


def make_document(directory: Path, name: str = "notes.md", text: str = "# Notes\n") -> Path:
    """Create a markdown document in *directory* and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    doc = directory / name
    doc.write_text(text, encoding="utf-8")
    return doc


def mock_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[[], httpx.AsyncClient]:
    """Client factory for the loader that serves requests from *handler*."""
    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return factory


class RecordingAccess:
    """Access provider that records calls and denies selected paths.

    Bookmarks are the path's UTF-8 bytes; ``stale`` and ``broken`` sets
    control how :meth:`resolve_bookmark` answers.
    """

    def __init__(self, denied: set[Path] | None = None) -> None:
        self.denied = set(denied or ())
        self.stale: set[Path] = set()
        self.broken: set[Path] = set()
        self.started: list[Path] = []
        self.stopped: list[Path] = []
        self.bookmarked: list[Path] = []

    def start(self, path: Path) -> bool:
        if path in self.denied:
            return False
        self.started.append(path)
        return True

    def stop(self, path: Path) -> None:
        self.stopped.append(path)

    def create_bookmark(self, path: Path) -> bytes:
        if path in self.broken:
            raise BookmarkError(f"cannot bookmark {path}")
        self.bookmarked.append(path)
        return str(path).encode("utf-8")

    def resolve_bookmark(self, bookmark: bytes) -> tuple[Path, bool]:
        path = Path(bookmark.decode("utf-8"))
        if path in self.broken:
            raise BookmarkError(f"bookmark for {path} is broken")
        return path, path in self.stale
