"""Value types shared by the resolver, the loader and the preview.

``ImageSource`` is a closed union of four frozen dataclasses; exactly
one variant describes where an image reference points.  ``LoadResult``
is the closed union the loader hands back to the preview, so callers
can match on it exhaustively instead of handling exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Union

from mdpreview.destination import format_destination

if TYPE_CHECKING:
    from mdpreview.decode import DecodedImage


# ---------------------------------------------------------------------------
# Image sources
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Remote:
    """HTTP(S) image, e.g. ``https://example.com/a.png``."""

    url: str

    @property
    def display_path(self) -> str:
        return self.url

    @property
    def resolved_path(self) -> Path | None:
        return None

    @property
    def requires_security_scope(self) -> bool:
        return False

    @property
    def is_remote(self) -> bool:
        return True


@dataclass(frozen=True)
class Absolute:
    """Absolute filesystem path, e.g. ``/Users/me/Pictures/cat.png``."""

    path: Path

    @property
    def display_path(self) -> str:
        return str(self.path)

    @property
    def resolved_path(self) -> Path | None:
        return self.path

    @property
    def requires_security_scope(self) -> bool:
        return True

    @property
    def is_remote(self) -> bool:
        return False


@dataclass(frozen=True)
class DocumentRelative:
    """Path resolved against the document's directory.

    The path is absolute and standardized, but the file is not
    guaranteed to exist: the resolver returns an unverified
    ``DocumentRelative`` so the preview can report where it looked.
    """

    path: Path

    @property
    def display_path(self) -> str:
        return str(self.path)

    @property
    def resolved_path(self) -> Path | None:
        return self.path

    @property
    def requires_security_scope(self) -> bool:
        return True

    @property
    def is_remote(self) -> bool:
        return False


@dataclass(frozen=True)
class Sidecar:
    """Image stored in the document's sidecar directory.

    ``resolved_path`` stays ``None`` until the sidecar lookup succeeds.
    """

    filename: str
    resolved_path: Path | None = None

    @property
    def display_path(self) -> str:
        return self.filename

    @property
    def requires_security_scope(self) -> bool:
        return False

    @property
    def is_remote(self) -> bool:
        return False


ImageSource = Union[Remote, Absolute, DocumentRelative, Sidecar]


# ---------------------------------------------------------------------------
# Load results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Success:
    """The image was found and decoded."""

    image: DecodedImage


@dataclass(frozen=True)
class Missing:
    """The image could not be located or accessed."""

    alt_text: str


@dataclass(frozen=True)
class Corrupt:
    """The image bytes were found but could not be decoded."""

    alt_text: str


LoadResult = Union[Success, Missing, Corrupt]


# ---------------------------------------------------------------------------
# Image references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageReference:
    """An image stored for a document, ready to be written into markdown."""

    filename: str
    alt_text: str = ""
    resolved_path: Path | None = None

    @property
    def markdown_syntax(self) -> str:
        """``![alt](filename)`` with the filename spelled as a CommonMark destination."""
        alt = self.alt_text.replace("[", "\\[").replace("]", "\\]")
        return f"![{alt}]({format_destination(self.filename)})"
