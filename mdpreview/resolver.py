"""Resolve markdown image destinations to typed :data:`ImageSource` values.

Resolution is an ordered list of named rules.  Each rule looks at the
normalized destination and the document context and either claims it
(returns an ``ImageSource``) or passes (returns ``None``).  The first
rule that claims the destination wins; the last rule always claims.

Priority:

1. empty destination → unresolved sidecar
2. ``http://`` / ``https://`` URL → remote
3. leading ``/`` → absolute
4. leading ``./`` or ``../`` with a known document → document-relative
5. plain filename:
   a. traversal-looking names → unresolved sidecar
   b. existing file next to the document → document-relative
   c. sidecar manifest entry, then file in the sidecar directory → sidecar
   d. known document → unverified document-relative (for error reporting)
   e. otherwise → unresolved sidecar

Document-relative wins over sidecar so that images resolve exactly as
they would in any other CommonMark renderer.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from mdpreview.destination import parse_destination
from mdpreview.models import Absolute, DocumentRelative, ImageSource, Remote, Sidecar

_log = logging.getLogger("resolver")

_TRAVERSAL_PATTERNS = ("..", "//", "\\", "\0")
"""Substrings that disqualify a plain filename from filesystem lookup."""


class SidecarLookup(Protocol):
    """Read-only view of a sidecar manager used during resolution."""

    @property
    def sidecar_dir(self) -> Path | None: ...

    def resolve_image(self, filename: str) -> Path | None: ...


@dataclass(frozen=True)
class ResolveContext:
    """Document context a destination is resolved against."""

    document_path: Path | None = None
    sidecar: SidecarLookup | None = None

    @property
    def document_dir(self) -> Path | None:
        if self.document_path is None:
            return None
        return standardize(self.document_path.parent)


Rule = Callable[[str, ResolveContext], "ImageSource | None"]


def standardize(path: Path) -> Path:
    """Collapse ``.`` and ``..`` components without touching the filesystem."""
    return Path(os.path.normpath(path))


def _contained(path: Path, root: Path) -> bool:
    return path == root or path.is_relative_to(root)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _empty(source: str, ctx: ResolveContext) -> ImageSource | None:
    if not source:
        return Sidecar(filename="", resolved_path=None)
    return None


def _remote(source: str, ctx: ResolveContext) -> ImageSource | None:
    if not source.lower().startswith(("http://", "https://")):
        return None
    try:
        url = httpx.URL(source)
    except httpx.InvalidURL:
        _log.debug("Unparseable URL %r, falling through", source)
        return None
    if not url.host or any(ch.isspace() or ch == "%" for ch in url.host):
        _log.debug("Invalid host in %r, falling through", source)
        return None
    return Remote(url=source)


def _absolute(source: str, ctx: ResolveContext) -> ImageSource | None:
    if source.startswith("/"):
        return Absolute(path=standardize(Path(source)))
    return None


def _explicit_relative(source: str, ctx: ResolveContext) -> ImageSource | None:
    if not source.startswith(("./", "../")):
        return None
    doc_dir = ctx.document_dir
    if doc_dir is None:
        return None
    return DocumentRelative(path=standardize(doc_dir / source))


def _traversal(source: str, ctx: ResolveContext) -> ImageSource | None:
    if source.startswith("/") or any(p in source for p in _TRAVERSAL_PATTERNS):
        _log.debug("Rejecting traversal-like filename %r", source)
        return Sidecar(filename=source, resolved_path=None)
    return None


def _document_file(source: str, ctx: ResolveContext) -> ImageSource | None:
    doc_dir = ctx.document_dir
    if doc_dir is None:
        return None
    candidate = standardize(doc_dir / source)
    if _contained(candidate, doc_dir) and candidate.exists():
        return DocumentRelative(path=candidate)
    return None


def _sidecar_manifest(source: str, ctx: ResolveContext) -> ImageSource | None:
    if ctx.sidecar is None:
        return None
    path = ctx.sidecar.resolve_image(source)
    if path is None:
        return None
    return Sidecar(filename=source, resolved_path=path)


def _sidecar_file(source: str, ctx: ResolveContext) -> ImageSource | None:
    if ctx.sidecar is None or ctx.sidecar.sidecar_dir is None:
        return None
    sidecar_dir = standardize(ctx.sidecar.sidecar_dir)
    candidate = standardize(sidecar_dir / source)
    if _contained(candidate, sidecar_dir) and candidate.exists():
        return Sidecar(filename=source, resolved_path=candidate)
    return None


def _unverified_document(source: str, ctx: ResolveContext) -> ImageSource | None:
    doc_dir = ctx.document_dir
    if doc_dir is None:
        return None
    return DocumentRelative(path=standardize(doc_dir / source))


def _unresolved_sidecar(source: str, ctx: ResolveContext) -> ImageSource:
    return Sidecar(filename=source, resolved_path=None)


RULES: tuple[tuple[str, Rule], ...] = (
    ("empty", _empty),
    ("remote", _remote),
    ("absolute", _absolute),
    ("explicit-relative", _explicit_relative),
    ("traversal", _traversal),
    ("document-file", _document_file),
    ("sidecar-manifest", _sidecar_manifest),
    ("sidecar-file", _sidecar_file),
    ("unverified-document", _unverified_document),
    ("unresolved-sidecar", _unresolved_sidecar),
)
"""Resolution rules in priority order.  The last rule always matches."""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def resolve_source(
    raw_source: str,
    document_path: Path | None = None,
    sidecar: SidecarLookup | None = None,
) -> ImageSource:
    """Resolve a raw ``![alt](source)`` destination to an :data:`ImageSource`.

    Args:
        raw_source: Destination exactly as written in the markdown.
        document_path: Path of the open document, if it has been saved.
        sidecar: Sidecar manager for the document, if any.

    Returns:
        The first matching variant.  Never raises: unresolvable input is
        returned as an unresolved ``Sidecar`` or an unverified
        ``DocumentRelative``.
    """
    source = parse_destination(raw_source)
    ctx = ResolveContext(document_path=document_path, sidecar=sidecar)
    for name, rule in RULES:
        result = rule(source, ctx)
        if result is not None:
            _log.debug("Resolved %r via %s → %s", raw_source, name, result)
            return result
    raise AssertionError("Final resolution rule did not match")
