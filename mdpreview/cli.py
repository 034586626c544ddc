"""CLI entry point for mdpreview.

Check the images referenced by markdown documents, resolve single image
destinations, and add images to a document's sidecar directory.

Usage::

    mdpreview check notes.md
    mdpreview check docs/*.md --remote-cache 20
    mdpreview resolve notes.md "diagram.png"
    mdpreview add notes.md ~/Desktop/screenshot.png --name overview.png
"""

import argparse
import asyncio
import contextvars
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import colorlog

from mdpreview import __version__
from mdpreview.config import (
    DEFAULT_CONNECT_TIMEOUT_S,
    DEFAULT_MAX_LOCAL_CACHE,
    DEFAULT_MAX_REMOTE_CACHE,
    DEFAULT_TOTAL_TIMEOUT_S,
    LoaderConfig,
)
from mdpreview.ingest import alt_text_for
from mdpreview.loader import SecureImageLoader
from mdpreview.models import ImageReference, LoadResult, Sidecar, Success
from mdpreview.preview import (
    ImageNode,
    LoadImageUseCase,
    collect_images,
    PlaceholderKind,
    placeholder_kind,
)
from mdpreview.resolver import resolve_source
from mdpreview.scheduler import MarkdownItParser, RenderScheduler
from mdpreview.sidecar import SidecarAssetManager, SidecarError


_log = logging.getLogger("mdpreview")

_SUMMARY_SEP = "=" * 78
"""Separator line for the check summary block."""


# ---------------------------------------------------------------------------
# Per-document logging context
# ---------------------------------------------------------------------------

_doc_context: contextvars.ContextVar[str] = contextvars.ContextVar(
    "mdpreview_doc", default="",
)
"""Name of the document being checked (inherited by child tasks)."""

_doc_prefix_width: int = 0
"""Minimum width for the ``[doc_name]`` prefix.

When non-zero the prefix is right-padded so that log messages align
across documents with different name lengths.  Zero means no prefix.
"""


class _DocumentContextFilter(logging.Filter):
    """Inject the current document name into every log record.

    While ``_doc_context`` is set, records carry a ``doc_prefix`` field
    (e.g. ``"[notes]    "``) right-padded to ``_doc_prefix_width``.
    Otherwise ``doc_prefix`` is the empty string.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        doc = _doc_context.get()
        if doc and _doc_prefix_width:
            tag = f"[{doc}]"
            record.doc_prefix = tag.ljust(_doc_prefix_width) + " "  # type: ignore[attr-defined]
        else:
            record.doc_prefix = ""  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_colorized_logging():
    """Configure colorized logging output."""
    handler = colorlog.StreamHandler()
    handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(levelname)-8s%(reset)s %(blue)s%(name)-9s%(reset)s: "
            "%(doc_prefix)s%(message)s",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler.addFilter(_DocumentContextFilter())
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("markdown_it").setLevel(logging.WARNING)


def _setup_logging(verbose: bool) -> None:
    """Initialize colorized logging and optionally enable debug level."""
    setup_colorized_logging()
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {number}")
    return number


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser with subcommands."""
    # -- Parent parsers for shared argument groups -----------------------------
    verbose_parent = argparse.ArgumentParser(add_help=False)
    verbose_parent.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    loader_parent = argparse.ArgumentParser(add_help=False)
    loader_parent.add_argument(
        "--local-cache",
        type=_positive_int,
        default=DEFAULT_MAX_LOCAL_CACHE,
        metavar="N",
        help="Maximum number of decoded local images kept in memory "
             "(default: %(default)s).",
    )
    loader_parent.add_argument(
        "--remote-cache",
        type=_positive_int,
        default=DEFAULT_MAX_REMOTE_CACHE,
        metavar="N",
        help="Maximum number of decoded remote images kept in memory "
             "(default: %(default)s).",
    )
    loader_parent.add_argument(
        "--timeout",
        type=_positive_float,
        default=DEFAULT_TOTAL_TIMEOUT_S,
        metavar="SECONDS",
        help="Total time allowed for one remote download "
             "(default: %(default)s).",
    )
    loader_parent.add_argument(
        "--connect-timeout",
        type=_positive_float,
        default=DEFAULT_CONNECT_TIMEOUT_S,
        metavar="SECONDS",
        help="Connect/read timeout for remote requests "
             "(default: %(default)s).",
    )

    # -- Main parser -----------------------------------------------------------
    parser = argparse.ArgumentParser(
        prog="mdpreview",
        description="Inspect and manage the images of markdown documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  check         Load every image referenced by markdown documents
  resolve       Show where one image destination points
  add           Copy an image into a document's sidecar directory

Examples:
  %(prog)s check notes.md                   Check one document
  %(prog)s check docs/*.md -v               Check many, with debug output
  %(prog)s resolve notes.md "a b.png"       Resolve one destination
  %(prog)s add notes.md shot.png            Add an image, print the snippet

Run '%(prog)s COMMAND --help' for command-specific options.
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # -- check -----------------------------------------------------------------
    p_check = subparsers.add_parser(
        "check",
        parents=[verbose_parent, loader_parent],
        formatter_class=argparse.RawDescriptionHelpFormatter,
        help="Load every image referenced by markdown documents",
        description="Parse each document, resolve and load every image it "
                    "references, and report missing or corrupt images.",
        epilog="""
Examples:
  %(prog)s notes.md                         Check single document
  %(prog)s *.md                             Check all documents in current dir
  %(prog)s notes.md --timeout 10            Give up on slow downloads sooner
        """,
    )
    p_check.add_argument(
        "documents",
        nargs="+",
        type=Path,
        help="Markdown file(s) to check (supports shell globs)",
    )

    # -- resolve ---------------------------------------------------------------
    p_resolve = subparsers.add_parser(
        "resolve",
        parents=[verbose_parent],
        formatter_class=argparse.RawDescriptionHelpFormatter,
        help="Show where one image destination points",
        description="Resolve an image destination the way the preview "
                    "does, relative to DOCUMENT and its sidecar directory.",
    )
    p_resolve.add_argument(
        "document",
        type=Path,
        help="Markdown document the destination appears in",
    )
    p_resolve.add_argument(
        "source",
        help="Destination as written between the parentheses",
    )

    # -- add -------------------------------------------------------------------
    p_add = subparsers.add_parser(
        "add",
        parents=[verbose_parent],
        formatter_class=argparse.RawDescriptionHelpFormatter,
        help="Copy an image into a document's sidecar directory",
        description="Copy IMAGE into the sidecar directory of DOCUMENT "
                    "and print the markdown snippet that references it.",
    )
    p_add.add_argument(
        "document",
        type=Path,
        help="Markdown document that will reference the image",
    )
    p_add.add_argument(
        "image",
        type=Path,
        help="Image file to copy",
    )
    p_add.add_argument(
        "--name",
        default=None,
        metavar="FILENAME",
        help="Filename to store the image under "
             "(default: the image's own name, deduplicated)",
    )

    return parser


def _loader_config(args: argparse.Namespace) -> LoaderConfig:
    return LoaderConfig(
        max_local_cache=args.local_cache,
        max_remote_cache=args.remote_cache,
        connect_timeout=args.connect_timeout,
        total_timeout=args.timeout,
    )


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


@dataclass
class _DocCheckResult:
    """Outcome of checking one document."""

    path: Path
    ok: int = 0
    missing: int = 0
    corrupt: int = 0
    failed: bool = False


def _log_image_result(image: ImageNode, display: str, result: LoadResult) -> None:
    where = f"line {image.line}: " if image.line else ""
    kind = placeholder_kind(result)
    if kind is None:
        assert isinstance(result, Success)
        _log.info(
            "  ✓ %s%s (%dx%d)",
            where, display, result.image.width, result.image.height,
        )
    else:
        _log.warning("  ✗ %s%s: %s", where, display, kind.label)


async def _check_document(
    doc_path: Path,
    use_case: LoadImageUseCase,
    parser: MarkdownItParser,
) -> _DocCheckResult:
    """Parse one document and load every image it references."""
    _doc_context.set(doc_path.stem)
    outcome = _DocCheckResult(doc_path)

    try:
        markdown = doc_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        _log.error("Cannot read %s: %s", doc_path, e)
        outcome.failed = True
        return outcome

    scheduler = RenderScheduler(parser)
    await scheduler.render(markdown)
    tree = scheduler.rendered_document
    if tree is None:
        outcome.failed = True
        return outcome

    sidecar = SidecarAssetManager()
    sidecar.configure(doc_path)
    try:
        images = list(collect_images(tree))
        _log.info("%d image(s)", len(images))
        results = await asyncio.gather(*(
            use_case.execute(
                image.source, image.alt_text,
                document_path=doc_path, sidecar=sidecar,
            )
            for image in images
        ))
        for image, result in zip(images, results):
            source = use_case.resolve(image.source, doc_path, sidecar)
            _log_image_result(image, source.display_path, result)
            kind = placeholder_kind(result)
            if kind is None:
                outcome.ok += 1
            elif kind is PlaceholderKind.MISSING:
                outcome.missing += 1
            else:
                outcome.corrupt += 1
    finally:
        sidecar.reset()
    return outcome


async def _check_documents(
    doc_paths: list[Path],
    config: LoaderConfig,
) -> list[_DocCheckResult]:
    parser = MarkdownItParser()
    async with SecureImageLoader(config) as loader:
        use_case = LoadImageUseCase(loader)
        results = []
        for doc_path in doc_paths:
            results.append(await _check_document(doc_path, use_case, parser))
        return results


def _cmd_check(args: argparse.Namespace) -> int:
    """Handle the ``check`` command."""
    global _doc_prefix_width

    _setup_logging(args.verbose)

    doc_paths: list[Path] = []
    for p in args.documents:
        if not p.is_file():
            _log.error("Document not found: %s", p)
            return 1
        doc_paths.append(p.resolve())

    if len(doc_paths) > 1:
        _doc_prefix_width = max(len(p.stem) for p in doc_paths) + 2

    _log.info("mdpreview %s", __version__)
    _log.info("Mode: check (%d document(s))", len(doc_paths))

    results = asyncio.run(_check_documents(doc_paths, _loader_config(args)))

    ok = sum(r.ok for r in results)
    missing = sum(r.missing for r in results)
    corrupt = sum(r.corrupt for r in results)
    failed = sum(1 for r in results if r.failed)

    _log.info("")
    _log.info(_SUMMARY_SEP)
    for r in results:
        if r.failed:
            _log.info("  %-40s failed", r.path.name)
        else:
            _log.info(
                "  %-40s %d ok, %d missing, %d corrupt",
                r.path.name, r.ok, r.missing, r.corrupt,
            )
    parts = [f"{ok} ok", f"{missing} missing", f"{corrupt} corrupt"]
    if failed:
        parts.append(f"{failed} failed")
    _log.info("Check %d document(s): %s", len(results), ", ".join(parts))
    _log.info(_SUMMARY_SEP)

    return 1 if (missing or corrupt or failed) else 0


# ---------------------------------------------------------------------------
# resolve / add
# ---------------------------------------------------------------------------


def _cmd_resolve(args: argparse.Namespace) -> int:
    """Handle the ``resolve`` command."""
    _setup_logging(args.verbose)

    doc_path = args.document.resolve()
    sidecar = SidecarAssetManager()
    sidecar.configure(doc_path)
    try:
        source = resolve_source(args.source, doc_path, sidecar)
    finally:
        sidecar.reset()

    kind = type(source).__name__
    if isinstance(source, Sidecar) and source.resolved_path is None:
        print(f"{kind}: {source.display_path} (not found)")
        return 1
    print(f"{kind}: {source.resolved_path or source.display_path}")
    return 0


def _cmd_add(args: argparse.Namespace) -> int:
    """Handle the ``add`` command."""
    _setup_logging(args.verbose)

    doc_path = args.document.resolve()
    if not doc_path.is_file():
        _log.error("Document not found: %s", args.document)
        return 1

    sidecar = SidecarAssetManager()
    sidecar.configure(doc_path)
    try:
        filename = sidecar.add_image(args.image.resolve(), args.name)
    except SidecarError as e:
        _log.error("%s", e.message)
        if e.recovery_suggestion:
            _log.error("%s", e.recovery_suggestion)
        return 1
    finally:
        sidecar.reset()

    reference = ImageReference(filename, alt_text=alt_text_for(args.image))
    print(reference.markdown_syntax)
    return 0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main() -> int:
    """Main entry point."""
    parser = _build_parser()

    # Show help if no arguments provided.
    if len(sys.argv) == 1:
        parser.print_help()
        return 0

    args = parser.parse_args()

    # No subcommand given (e.g. only --version was handled by argparse).
    if args.command is None:
        parser.print_help()
        return 0

    handlers = {
        "check": _cmd_check,
        "resolve": _cmd_resolve,
        "add": _cmd_add,
    }
    return handlers[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
