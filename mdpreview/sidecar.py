"""Per-document sidecar asset directory.

A document ``notes.md`` keeps its images in a companion directory next
to it, ``notes.assets/``, and references them by bare filename::

    ![diagram](diagram.png)

Two legacy directory spellings are still recognized when they already
exist: ``_notes_assets/`` and ``.notes.assets/``.  The directory is
created lazily, on the first image insert.

The manager keeps a manifest (filename → absolute path) of the image
files in the directory.  It is the only writer of that manifest;
resolvers and the preview read it through :meth:`resolve_image` or the
read-only :attr:`SidecarAssetManager.manifest` view.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from mdpreview.decode import is_image_path
from mdpreview.scope import AccessProvider, FilesystemAccess, HeldScope

_log = logging.getLogger("sidecar")

SIDECAR_SUFFIX = ".assets"
"""Suffix of the default sidecar directory name (``{stem}.assets``)."""

DEFAULT_IMAGE_STEM = "image"
"""Filename used when a preferred name sanitizes to nothing."""

DEFAULT_IMAGE_EXTENSION = ".png"
"""Extension appended to names that have none."""

_INVALID_FILENAME_CHARS = '/\\:*?"<>|'


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SidecarError(Exception):
    """Recoverable failure of a sidecar operation.

    Carries a user-facing message and a recovery suggestion so the
    host can present a dismissible alert.
    """

    recovery_suggestion = ""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NoSidecarConfiguredError(SidecarError):
    recovery_suggestion = "Save the document to enable image insertion."

    def __init__(self) -> None:
        super().__init__("No sidecar directory configured. Save the document first.")


class ImageNotFoundError(SidecarError):
    recovery_suggestion = "Check if the image file exists in the assets folder."

    def __init__(self, filename: str) -> None:
        super().__init__(f"Image not found: {filename}")
        self.filename = filename


class CopyFailedError(SidecarError):
    recovery_suggestion = "Try copying the image again or check file permissions."

    def __init__(self, filename: str, reason: str = "") -> None:
        if reason:
            message = f"Failed to copy image '{filename}': {reason}"
        else:
            message = f"Failed to copy image: {filename}"
        super().__init__(message)
        self.filename = filename
        self.reason = reason


class DirectoryCreationFailedError(SidecarError):
    recovery_suggestion = "Check write permissions for the document folder."

    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to create sidecar directory: {reason}")
        self.reason = reason


class InvalidImageFormatError(SidecarError):
    recovery_suggestion = "Use a supported image format (PNG, JPEG, GIF, TIFF, WebP)."

    def __init__(self, filename: str) -> None:
        super().__init__(f"Invalid image format: {filename}")
        self.filename = filename


# ---------------------------------------------------------------------------
# Filename helpers
# ---------------------------------------------------------------------------


def sidecar_candidates(document_path: Path) -> list[Path]:
    """Sidecar directory candidates for *document_path*, in preference order."""
    base = document_path.stem
    parent = document_path.parent
    return [
        parent / f"{base}{SIDECAR_SUFFIX}",
        parent / f"_{base}_assets",
        parent / f".{base}{SIDECAR_SUFFIX}",
    ]


def sanitize_filename(filename: str) -> str:
    """Make *filename* safe to create inside the sidecar directory.

    Replaces ``/ \\ : * ? " < > |`` with underscores, strips leading dots
    so the file is not hidden (a bare ``.ext`` becomes ``image.ext``),
    falls back to ``image`` for empty names, and appends ``.png`` when
    there is no extension.
    """
    sanitized = "".join(
        "_" if ch in _INVALID_FILENAME_CHARS else ch for ch in filename
    )
    stripped = sanitized.lstrip(".")
    if stripped != sanitized and stripped and "." not in stripped:
        stripped = f"{DEFAULT_IMAGE_STEM}.{stripped}"
    sanitized = stripped or DEFAULT_IMAGE_STEM
    if not os.path.splitext(sanitized)[1]:
        sanitized += DEFAULT_IMAGE_EXTENSION
    return sanitized


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SidecarAssetManager:
    """Tracks and populates the sidecar directory of one open document.

    Usage::

        sidecar = SidecarAssetManager()
        sidecar.configure(Path("/docs/readme.md"))
        filename = sidecar.add_image(Path("~/Desktop/shot.png").expanduser())
        # -> "shot.png", copied to /docs/readme.assets/shot.png

    While configured, the manager holds scoped access to the document
    and its parent directory; :meth:`configure` and :meth:`reset`
    release the previous hold.
    """

    def __init__(self, access: AccessProvider | None = None) -> None:
        self._access = access or FilesystemAccess()
        self._scope = HeldScope(self._access)
        self._sidecar_dir: Path | None = None
        self._document_path: Path | None = None
        self._manifest: dict[str, Path] = {}

    # -- State ----------------------------------------------------------------

    @property
    def sidecar_dir(self) -> Path | None:
        """The sidecar directory (may not exist yet)."""
        return self._sidecar_dir

    @property
    def document_path(self) -> Path | None:
        return self._document_path

    @property
    def manifest(self) -> Mapping[str, Path]:
        """Read-only view of the filename → path manifest."""
        return MappingProxyType(self._manifest)

    @property
    def sidecar_exists(self) -> bool:
        return self._sidecar_dir is not None and self._sidecar_dir.is_dir()

    @staticmethod
    def default_sidecar_dir(document_path: Path) -> Path:
        """The ``{stem}.assets`` directory next to *document_path*."""
        return sidecar_candidates(document_path)[0]

    # -- Configuration --------------------------------------------------------

    def configure(self, document_path: Path) -> None:
        """Point the manager at *document_path* and load its sidecar.

        Picks the first existing candidate directory; if none exists
        the default ``{stem}.assets`` is selected without creating it.
        """
        self._scope.release()
        self._document_path = document_path
        self._manifest = {}

        self._scope.acquire(document_path)
        self._scope.acquire(document_path.parent)

        for candidate in sidecar_candidates(document_path):
            if candidate.is_dir():
                self._sidecar_dir = candidate
                _log.debug("Using existing sidecar %s", candidate)
                self.refresh_manifest()
                return

        self._sidecar_dir = self.default_sidecar_dir(document_path)
        _log.debug("No sidecar yet, will create %s on first insert", self._sidecar_dir)

    def reset(self) -> None:
        """Forget the current document and release held access."""
        self._scope.release()
        self._sidecar_dir = None
        self._document_path = None
        self._manifest = {}

    def refresh_manifest(self) -> None:
        """Rebuild the manifest from the sidecar directory's image files.

        Hidden files and non-image files are skipped.  Any filesystem
        error leaves the manifest empty.
        """
        if self._sidecar_dir is None or not self._sidecar_dir.is_dir():
            self._manifest = {}
            return

        manifest: dict[str, Path] = {}
        try:
            for entry in self._sidecar_dir.iterdir():
                if entry.name.startswith("."):
                    continue
                if entry.is_file() and is_image_path(entry):
                    manifest[entry.name] = entry
        except OSError as e:
            _log.warning("Cannot scan sidecar %s: %s", self._sidecar_dir, e)
            manifest = {}
        self._manifest = manifest
        _log.debug("Sidecar manifest: %d image(s)", len(manifest))

    # -- Queries --------------------------------------------------------------

    def resolve_image(self, filename: str) -> Path | None:
        """Return the manifest path for *filename*, if present."""
        return self._manifest.get(filename)

    def image_exists(self, filename: str) -> bool:
        return filename in self._manifest

    # -- Mutations ------------------------------------------------------------

    def add_image(self, source: Path, preferred_name: str | None = None) -> str:
        """Copy an image file into the sidecar.

        Args:
            source: Image file to copy.
            preferred_name: Name to store it under (sanitized and
                de-duplicated).  Defaults to the source filename.

        Returns:
            The filename to reference from markdown.

        Raises:
            NoSidecarConfiguredError: No document is configured.
            InvalidImageFormatError: *source* is not an image type.
            ImageNotFoundError: *source* does not exist.
            DirectoryCreationFailedError: The sidecar cannot be created.
            CopyFailedError: The copy failed.
        """
        sidecar_dir = self._require_sidecar()
        if not is_image_path(source):
            raise InvalidImageFormatError(source.name)
        if not source.is_file():
            raise ImageNotFoundError(source.name)

        self._ensure_directory(sidecar_dir)
        filename = self._unique_filename(
            sanitize_filename(preferred_name or source.name)
        )
        dest = sidecar_dir / filename
        try:
            with source.open("rb") as src, dest.open("xb") as dst:
                shutil.copyfileobj(src, dst)
        except OSError as e:
            raise CopyFailedError(filename, str(e)) from e

        self._manifest[filename] = dest
        _log.info("Added %s to sidecar as %s", source.name, filename)
        return filename

    def add_image_data(self, data: bytes, preferred_name: str) -> str:
        """Write raw image bytes into the sidecar.

        Same naming and error behaviour as :meth:`add_image`, minus the
        source-file checks.
        """
        sidecar_dir = self._require_sidecar()
        self._ensure_directory(sidecar_dir)
        filename = self._unique_filename(sanitize_filename(preferred_name))
        dest = sidecar_dir / filename
        try:
            with dest.open("xb") as dst:
                dst.write(data)
        except OSError as e:
            raise CopyFailedError(filename, str(e)) from e

        self._manifest[filename] = dest
        _log.info("Wrote %d byte(s) to sidecar as %s", len(data), filename)
        return filename

    # -- Internals ------------------------------------------------------------

    def _require_sidecar(self) -> Path:
        if self._sidecar_dir is None:
            raise NoSidecarConfiguredError()
        return self._sidecar_dir

    def _ensure_directory(self, sidecar_dir: Path) -> None:
        if sidecar_dir.is_dir():
            return
        try:
            sidecar_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DirectoryCreationFailedError(str(e)) from e
        _log.info("Created sidecar directory %s", sidecar_dir)

    def _unique_filename(self, base: str) -> str:
        """Suffix ``-1``, ``-2``, ... before the extension until unused.

        A name is taken if it is in the manifest or already on disk.
        """
        stem, ext = os.path.splitext(base)
        filename = base
        counter = 1
        while self._is_taken(filename):
            filename = f"{stem}-{counter}{ext}"
            counter += 1
        return filename

    def _is_taken(self, filename: str) -> bool:
        if filename in self._manifest:
            return True
        return self._sidecar_dir is not None and (self._sidecar_dir / filename).exists()
