"""Image type detection and decoding.

Decoding goes through pymupdf, which reads PNG, JPEG, GIF, TIFF, BMP,
PNM and several other raster formats from memory.  A decoded image
keeps its pixel dimensions alongside the original encoded bytes, which
is all the preview needs to lay out and display it.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path

import pymupdf

_log = logging.getLogger("decode")

_FALLBACK_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/tiff": "tiff",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/bmp": "bmp",
}
"""Preferred filename extension per image MIME type."""


class DecodeError(Exception):
    """Bytes could not be decoded as an image."""


@dataclass(frozen=True)
class DecodedImage:
    """A decoded raster image."""

    width: int
    height: int
    channels: int
    """Colour channels including alpha (e.g. 3 for RGB, 4 for RGBA)."""
    data: bytes
    """The original encoded bytes."""

    @property
    def is_valid(self) -> bool:
        """True if the image has a non-empty pixel area."""
        return self.width > 0 and self.height > 0


def decode_image(data: bytes) -> DecodedImage:
    """Decode encoded image bytes.

    Raises:
        DecodeError: If *data* is empty, not an image, or decodes to an
            image without pixels.
    """
    if not data:
        raise DecodeError("empty image data")
    try:
        pix = pymupdf.Pixmap(data)
    except Exception as e:
        raise DecodeError(f"{type(e).__name__}: {e}") from e

    image = DecodedImage(
        width=pix.width, height=pix.height, channels=pix.n, data=bytes(data),
    )
    if not image.is_valid:
        raise DecodeError(f"image has no pixels ({pix.width}x{pix.height})")
    _log.debug("Decoded %dx%d image, %d channel(s)", image.width, image.height, image.channels)
    return image


# ---------------------------------------------------------------------------
# Type detection
# ---------------------------------------------------------------------------


def image_mime_type(path: Path | str) -> str | None:
    """Return the image MIME type for *path*'s extension, or ``None``."""
    mime, _ = mimetypes.guess_type(str(path), strict=False)
    if mime is None or not mime.startswith("image/"):
        return None
    return mime


def is_image_path(path: Path | str) -> bool:
    """True if *path*'s extension names an image type."""
    return image_mime_type(path) is not None


def is_image_mime(mime: str | None) -> bool:
    return bool(mime) and mime.lower().startswith("image/")


def preferred_extension(mime: str | None, default: str = "png") -> str:
    """Preferred filename extension (without dot) for an image MIME type."""
    if not mime:
        return default
    mime = mime.lower().split(";", 1)[0].strip()
    if mime in _FALLBACK_EXTENSIONS:
        return _FALLBACK_EXTENSIONS[mime]
    ext = mimetypes.guess_extension(mime, strict=False)
    if ext and is_image_mime(mime):
        return ext.lstrip(".")
    return default
