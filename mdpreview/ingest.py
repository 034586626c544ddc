"""Drag-and-drop and paste of images into a document.

Dropped image files are copied into the document's sidecar directory;
pasted image bytes (screenshots, copied images) are written there under
a timestamped name.  For every stored image a ``![alt](filename)``
snippet is handed to the editor's insertion callback, which splices it
in at the cursor.

Items are processed one after another.  A failing item is logged and
skipped; the batch reports success if at least one item was stored.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from mdpreview.decode import is_image_mime, is_image_path, preferred_extension
from mdpreview.models import ImageReference
from mdpreview.scope import AccessProvider, FilesystemAccess, scoped_access
from mdpreview.sidecar import SidecarAssetManager, SidecarError

_log = logging.getLogger("ingest")

PASTE_TYPE_PREFERENCE = ("image/png", "image/tiff", "image/jpeg")
"""Pasteboard image types checked first, in order."""

PASTED_ALT_TEXT = "Pasted Image"


class UndoGrouping(Protocol):
    """Subset of the host's undo manager used to group insertions."""

    def begin_undo_grouping(self, action_name: str) -> None: ...

    def end_undo_grouping(self) -> None: ...


@dataclass
class PasteboardContents:
    """What the host found on the pasteboard."""

    data: dict[str, bytes] = field(default_factory=dict)
    """Raw payloads keyed by MIME type (e.g. ``{"image/png": b"..."}``)."""
    paths: list[Path] = field(default_factory=list)
    """File paths on the pasteboard."""


def pasted_filename(mime: str | None, now: datetime) -> str:
    """``pasted-2026-10-18_14-03-59.png`` style name for pasted bytes.

    The timestamp is UTC; a naive *now* is taken as local time.
    """
    stamp = now.astimezone(timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")
    return f"pasted-{stamp}.{preferred_extension(mime)}"


def alt_text_for(path: Path) -> str:
    """Alt text derived from a filename: ``my_cat-photo.png`` → ``my cat photo``."""
    return path.stem.replace("-", " ").replace("_", " ")


def _pick_image_data(data: dict[str, bytes]) -> tuple[bytes, str] | None:
    for mime in PASTE_TYPE_PREFERENCE:
        payload = data.get(mime)
        if payload:
            return payload, mime
    for mime, payload in data.items():
        if payload and is_image_mime(mime):
            return payload, mime
    return None


class ImageDropHandler:
    """Store dropped or pasted images and queue their markdown.

    Args:
        sidecar: Sidecar of the document receiving the images.
        insert_markdown: Called with each ``![alt](filename)`` snippet.
        undo: Optional undo manager; each drop/paste becomes one group.
        access: Scoped-access provider for dropped files.
        clock: Returns the current time (for pasted filenames).
    """

    def __init__(
        self,
        sidecar: SidecarAssetManager,
        insert_markdown: Callable[[str], None],
        undo: UndoGrouping | None = None,
        access: AccessProvider | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._sidecar = sidecar
        self._insert = insert_markdown
        self._undo = undo
        self._access = access or FilesystemAccess()
        self._clock = clock

    # -- Capability checks ----------------------------------------------------

    @staticmethod
    def can_handle_drop(paths: Iterable[Path]) -> bool:
        return any(is_image_path(p) for p in paths)

    @staticmethod
    def can_handle_paste(contents: PasteboardContents) -> bool:
        if _pick_image_data(contents.data) is not None:
            return True
        return ImageDropHandler.can_handle_drop(contents.paths)

    # -- Drop -----------------------------------------------------------------

    def handle_drop(self, paths: Iterable[Path]) -> bool:
        """Import dropped files; non-image files are ignored.

        Returns:
            True if at least one image was stored.
        """
        images = [p for p in paths if is_image_path(p)]
        if not images:
            return False

        action = "Insert Image" if len(images) == 1 else "Insert Images"
        stored = 0
        with self._undo_group(action):
            for path in images:
                if self._import_file(path):
                    stored += 1

        if stored < len(images):
            _log.warning("Imported %d of %d dropped image(s)", stored, len(images))
        return stored > 0

    def _import_file(self, path: Path) -> bool:
        try:
            with scoped_access(self._access, path):
                filename = self._sidecar.add_image(path)
        except (SidecarError, OSError) as e:
            _log.warning("Failed to import image %s: %s", path.name, e)
            return False

        ref = ImageReference(filename=filename, alt_text=alt_text_for(path))
        self._insert(ref.markdown_syntax)
        return True

    # -- Paste ----------------------------------------------------------------

    def handle_paste(self, contents: PasteboardContents) -> bool:
        """Import pasted image bytes, or else pasted image files.

        Returns:
            True if an image was stored.
        """
        picked = _pick_image_data(contents.data)
        if picked is not None:
            payload, mime = picked
            return self._import_data(payload, mime)
        if contents.paths:
            return self.handle_drop(contents.paths)
        return False

    def _import_data(self, payload: bytes, mime: str) -> bool:
        name = pasted_filename(mime, self._clock())
        with self._undo_group("Paste Image"):
            try:
                filename = self._sidecar.add_image_data(payload, preferred_name=name)
            except (SidecarError, OSError) as e:
                _log.warning("Failed to paste image: %s", e)
                return False
            ref = ImageReference(filename=filename, alt_text=PASTED_ALT_TEXT)
            self._insert(ref.markdown_syntax)
        return True

    @contextmanager
    def _undo_group(self, action_name: str) -> Iterator[None]:
        if self._undo is None:
            yield
            return
        self._undo.begin_undo_grouping(action_name)
        try:
            yield
        finally:
            self._undo.end_undo_grouping()
