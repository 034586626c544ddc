"""Image pipeline for a live markdown preview.

Turns the image references of a markdown document into pixels and
stores new images next to the document.

Key features:
- CommonMark link-destination parsing (angle brackets, backslash escapes)
- Ranked resolution of image destinations to remote URLs, absolute
  paths, document-relative paths, or the document's sidecar directory
- Sidecar asset management with collision-free filenames
- Cached, single-flight image loading (httpx) with download progress
- Debounced markdown rendering (markdown-it-py)
- Drag-and-drop and paste ingestion of images

Note: Imports are deferred so that ``import mdpreview`` does not pull
in ``httpx``, ``pymupdf`` or ``markdown_it``.  Use explicit imports from
submodules (e.g., ``from mdpreview.loader import SecureImageLoader``) or
access the names via this package.
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("mdpreview")
except PackageNotFoundError:
    __version__ = "0.0.0"  # fallback for uninstalled dev usage


def __getattr__(name: str):
    """Lazy imports to avoid loading heavy dependencies at package import time."""
    # Map attribute names to their source modules.
    _lazy_imports = {
        # mdpreview.config
        "LoaderConfig": "mdpreview.config",
        "RenderConfig": "mdpreview.config",
        # mdpreview.destination
        "parse_destination": "mdpreview.destination",
        "format_destination": "mdpreview.destination",
        # mdpreview.models
        "Remote": "mdpreview.models",
        "Absolute": "mdpreview.models",
        "DocumentRelative": "mdpreview.models",
        "Sidecar": "mdpreview.models",
        "ImageSource": "mdpreview.models",
        "Success": "mdpreview.models",
        "Missing": "mdpreview.models",
        "Corrupt": "mdpreview.models",
        "LoadResult": "mdpreview.models",
        "ImageReference": "mdpreview.models",
        # mdpreview.resolver
        "resolve_source": "mdpreview.resolver",
        # mdpreview.sidecar
        "SidecarAssetManager": "mdpreview.sidecar",
        "SidecarError": "mdpreview.sidecar",
        # mdpreview.decode
        "DecodedImage": "mdpreview.decode",
        "decode_image": "mdpreview.decode",
        # mdpreview.loader
        "SecureImageLoader": "mdpreview.loader",
        # mdpreview.scheduler
        "RenderScheduler": "mdpreview.scheduler",
        "RenderState": "mdpreview.scheduler",
        "MarkdownItParser": "mdpreview.scheduler",
        # mdpreview.ingest
        "ImageDropHandler": "mdpreview.ingest",
        "PasteboardContents": "mdpreview.ingest",
        # mdpreview.preview
        "LoadImageUseCase": "mdpreview.preview",
        "collect_images": "mdpreview.preview",
        "PlaceholderKind": "mdpreview.preview",
        "placeholder_text": "mdpreview.preview",
    }

    if name in _lazy_imports:
        import importlib
        module = importlib.import_module(_lazy_imports[name])
        return getattr(module, name)

    raise AttributeError(f"module 'mdpreview' has no attribute {name!r}")


__all__ = [
    "LoaderConfig",
    "RenderConfig",
    "parse_destination",
    "format_destination",
    "Remote",
    "Absolute",
    "DocumentRelative",
    "Sidecar",
    "ImageSource",
    "Success",
    "Missing",
    "Corrupt",
    "LoadResult",
    "ImageReference",
    "resolve_source",
    "SidecarAssetManager",
    "SidecarError",
    "DecodedImage",
    "decode_image",
    "SecureImageLoader",
    "RenderScheduler",
    "RenderState",
    "MarkdownItParser",
    "ImageDropHandler",
    "PasteboardContents",
    "LoadImageUseCase",
    "collect_images",
    "PlaceholderKind",
    "placeholder_text",
]
