"""Preview-side glue between the parsed document and the image loader.

- :func:`collect_images` finds every image node in a parsed document.
- :class:`LoadImageUseCase` resolves one destination and loads it.
- :class:`PlaceholderKind` / :func:`placeholder_text` describe what to
  draw while an image is loading or when it failed.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from markdown_it.tree import SyntaxTreeNode

from mdpreview.loader import ProgressCallback, SecureImageLoader
from mdpreview.models import Corrupt, ImageSource, LoadResult, Missing
from mdpreview.resolver import SidecarLookup, resolve_source

_PLACEHOLDER_MAX_CHARS = 30


# ---------------------------------------------------------------------------
# Image nodes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageNode:
    """An image found in the parsed document."""

    source: str
    """Destination as the parser reports it."""
    alt_text: str
    title: str | None = None
    line: int | None = None
    """1-indexed source line of the enclosing block, if known."""


def _block_line(node: SyntaxTreeNode) -> int | None:
    current: SyntaxTreeNode | None = node
    while current is not None:
        if current.map is not None:
            return current.map[0] + 1
        current = current.parent
    return None


def collect_images(tree: SyntaxTreeNode) -> Iterator[ImageNode]:
    """Yield every image in *tree* in document order."""
    for node in tree.walk():
        if node.type != "image":
            continue
        title = node.attrs.get("title")
        yield ImageNode(
            source=str(node.attrs.get("src", "")),
            alt_text=node.content,
            title=str(title) if title else None,
            line=_block_line(node),
        )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class LoadImageUseCase:
    """Resolve a markdown destination and load it through the loader."""

    def __init__(self, loader: SecureImageLoader) -> None:
        self._loader = loader

    @staticmethod
    def resolve(
        source: str,
        document_path: Path | None = None,
        sidecar: SidecarLookup | None = None,
    ) -> ImageSource:
        return resolve_source(source, document_path, sidecar)

    async def execute(
        self,
        source: str,
        alt_text: str,
        document_path: Path | None = None,
        sidecar: SidecarLookup | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> LoadResult:
        image_source = self.resolve(source, document_path, sidecar)
        return await self._loader.load(
            image_source, alt_text,
            document_path=document_path,
            on_progress=on_progress,
        )


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------


class PlaceholderKind(Enum):
    """Non-image states the preview draws in place of an image."""

    MISSING = "missing"
    CORRUPT = "corrupt"
    LOADING = "loading"

    @property
    def label(self) -> str:
        return _PLACEHOLDER_LABELS[self]


_PLACEHOLDER_LABELS = {
    PlaceholderKind.MISSING: "Image not found",
    PlaceholderKind.CORRUPT: "Cannot load image",
    PlaceholderKind.LOADING: "Loading...",
}


def placeholder_kind(result: LoadResult | None) -> PlaceholderKind | None:
    """Placeholder for *result*; ``None`` result means still loading."""
    if result is None:
        return PlaceholderKind.LOADING
    if isinstance(result, Missing):
        return PlaceholderKind.MISSING
    if isinstance(result, Corrupt):
        return PlaceholderKind.CORRUPT
    return None


def truncate_middle(text: str, max_length: int = _PLACEHOLDER_MAX_CHARS) -> str:
    """Shorten *text* to *max_length* by replacing its middle with ``...``."""
    if len(text) <= max_length:
        return text
    half = (max_length - 3) // 2
    return f"{text[:half]}...{text[len(text) - half:]}"


def placeholder_text(kind: PlaceholderKind, alt_text: str, filename: str) -> str:
    """Text drawn inside a placeholder.

    The label for *kind* followed by the alt text, or the filename when
    there is no alt text, truncated in the middle.
    """
    name = truncate_middle(alt_text or filename)
    if not name:
        return kind.label
    return f"{kind.label}: {name}"
