"""Cached, single-flight image loading for the markdown preview.

:class:`SecureImageLoader` turns a resolved :data:`ImageSource` into a
:data:`LoadResult`.  It owns:

- two bounded FIFO caches of decoded images, one for local files and
  one for remote URLs;
- the table of in-flight remote downloads, so concurrent requests for
  the same URL share one network fetch;
- access bookmarks for files outside the document's directory.

All state lives on the event loop that drives the loader.  Every
mutation happens between ``await`` points, so cache updates and the
download table are linearized without explicit locks.  Failures never
escape :meth:`SecureImageLoader.load`: they become ``Missing`` or
``Corrupt`` results.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import ExitStack
from pathlib import Path

import httpx

from mdpreview.cache import FifoCache
from mdpreview.config import LoaderConfig
from mdpreview.decode import DecodedImage, DecodeError, decode_image
from mdpreview.models import Corrupt, ImageSource, LoadResult, Missing, Remote, Success
from mdpreview.resolver import standardize
from mdpreview.scope import AccessProvider, BookmarkError, FilesystemAccess, scoped_access

_log = logging.getLogger("loader")

ProgressCallback = Callable[[float], None]
"""Receives download progress in ``[0.0, 1.0]``."""

ClientFactory = Callable[[], httpx.AsyncClient]

_MAX_STREAM_PROGRESS = 0.99
"""Progress ceiling while bytes are still streaming (1.0 is reserved for decoded)."""

_NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


def local_cache_key(path: Path) -> str:
    """Cache key (a ``file://`` URL) for a local image path."""
    return path.absolute().as_uri()


def requires_security_scope(path: Path, document_path: Path | None) -> bool:
    """True if *path* lies outside the document's directory tree.

    Without a document every local path needs scoped access.
    """
    if document_path is None:
        return True
    doc_dir = standardize(document_path.parent)
    path = standardize(path)
    return not (path == doc_dir or path.is_relative_to(doc_dir))


def _report(on_progress: ProgressCallback | None, value: float) -> None:
    """Call *on_progress*; a failing callback is logged, never raised."""
    if on_progress is None:
        return
    try:
        on_progress(value)
    except Exception as e:
        _log.warning("Progress callback failed: %s: %s", type(e).__name__, e)


def _with_alt_text(result: LoadResult, alt_text: str) -> LoadResult:
    """Re-address a shared download result to another caller's alt text."""
    if isinstance(result, Missing):
        return Missing(alt_text)
    if isinstance(result, Corrupt):
        return Corrupt(alt_text)
    return result


class SecureImageLoader:
    """Load images from local files and remote URLs with caching.

    Usage::

        async with SecureImageLoader(LoaderConfig(max_remote_cache=20)) as loader:
            result = await loader.load(source, "diagram", document_path=doc)
            if isinstance(result, Success):
                show(result.image)

    Args:
        config: Cache bounds and network timeouts.
        client_factory: Builds the ``httpx.AsyncClient`` on first remote
            load.  Tests inject a client backed by ``httpx.MockTransport``.
        access: Scoped-access provider for files outside the document.
        decoder: Turns bytes into a :class:`DecodedImage` or raises
            :class:`DecodeError`.
    """

    def __init__(
        self,
        config: LoaderConfig | None = None,
        *,
        client_factory: ClientFactory | None = None,
        access: AccessProvider | None = None,
        decoder: Callable[[bytes], DecodedImage] = decode_image,
    ) -> None:
        self._config = config or LoaderConfig()
        self._local_cache: FifoCache[str, DecodedImage] = FifoCache(
            self._config.max_local_cache
        )
        self._remote_cache: FifoCache[str, DecodedImage] = FifoCache(
            self._config.max_remote_cache
        )
        self._active_downloads: dict[str, asyncio.Task[LoadResult]] = {}
        self._bookmarks: dict[Path, bytes] = {}
        self._access = access or FilesystemAccess()
        self._decode = decoder
        self._client_factory = client_factory or self._default_client_factory
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def __aenter__(self) -> SecureImageLoader:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel downloads and close the HTTP client."""
        self.cancel_all_downloads()
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    # -- Introspection --------------------------------------------------------

    @property
    def config(self) -> LoaderConfig:
        return self._config

    @property
    def local_cache_count(self) -> int:
        return len(self._local_cache)

    @property
    def remote_cache_count(self) -> int:
        return len(self._remote_cache)

    @property
    def active_download_count(self) -> int:
        return len(self._active_downloads)

    def is_downloading(self, url: str) -> bool:
        return url in self._active_downloads

    def has_bookmark(self, path: Path) -> bool:
        return path in self._bookmarks

    # -- Loading --------------------------------------------------------------

    async def load(
        self,
        source: ImageSource,
        alt_text: str,
        document_path: Path | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> LoadResult:
        """Load the image described by *source*.

        Args:
            source: Output of :func:`~mdpreview.resolver.resolve_source`.
            alt_text: Carried into ``Missing``/``Corrupt`` results.
            document_path: Decides whether local files need scoped access.
            on_progress: Remote loads only; called with increasing
                fractions, ending at exactly 1.0 on success.
        """
        if isinstance(source, Remote):
            return await self._load_remote(source.url, alt_text, on_progress)

        path = source.resolved_path
        if path is None:
            _log.debug("Unresolved source %r → missing", source.display_path)
            return Missing(alt_text)
        return self._load_local(path, alt_text, document_path)

    def _load_local(
        self,
        path: Path,
        alt_text: str,
        document_path: Path | None,
    ) -> LoadResult:
        key = local_cache_key(path)
        cached = self._local_cache.get(key)
        if cached is not None:
            _log.debug("Local cache hit: %s", path)
            return Success(cached)

        with ExitStack() as stack:
            target = path
            if requires_security_scope(path, document_path):
                granted = self._acquire_access(path, stack)
                if granted is None:
                    _log.debug("No access to %s → missing", path)
                    return Missing(alt_text)
                target = granted

            if not target.is_file():
                _log.debug("Not a file: %s → missing", target)
                return Missing(alt_text)
            try:
                data = target.read_bytes()
            except OSError as e:
                _log.warning("Cannot read %s: %s", target, e)
                return Missing(alt_text)

            try:
                image = self._decode(data)
            except DecodeError as e:
                _log.debug("Cannot decode %s: %s", target, e)
                return Corrupt(alt_text)

        evicted = self._local_cache.put(key, image)
        if evicted is not None:
            _log.debug("Local cache full, evicted %s", evicted)
        return Success(image)

    def _acquire_access(self, path: Path, stack: ExitStack) -> Path | None:
        """Enter scoped access to *path* on *stack*; return the path to read.

        A stored bookmark is tried first (refreshed when stale), then
        direct access to *path*.
        """
        bookmark = self._bookmarks.get(path)
        if bookmark is not None:
            try:
                resolved, is_stale = self._access.resolve_bookmark(bookmark)
            except BookmarkError as e:
                _log.debug("Bookmark for %s unusable: %s", path, e)
            else:
                if stack.enter_context(scoped_access(self._access, resolved)):
                    if is_stale:
                        self._store_bookmark(path, resolved)
                    return resolved

        if stack.enter_context(scoped_access(self._access, path)):
            return path
        return None

    async def _load_remote(
        self,
        url: str,
        alt_text: str,
        on_progress: ProgressCallback | None,
    ) -> LoadResult:
        cached = self._remote_cache.get(url)
        if cached is not None:
            _log.debug("Remote cache hit: %s", url)
            _report(on_progress, 1.0)
            return Success(cached)

        task = self._active_downloads.get(url)
        if task is None:
            task = asyncio.create_task(
                self._download(url, alt_text, on_progress),
                name=f"download {url}",
            )
            self._active_downloads[url] = task
            joined = False
        else:
            _log.debug("Joining in-flight download: %s", url)
            joined = True

        # wait() neither raises for a cancelled task nor cancels it when
        # this caller is cancelled, so other awaiters keep the download.
        await asyncio.wait({task})
        if task.cancelled():
            return Missing(alt_text)

        result = _with_alt_text(task.result(), alt_text)
        if joined and isinstance(result, Success):
            _report(on_progress, 1.0)
        return result

    async def _download(
        self,
        url: str,
        alt_text: str,
        on_progress: ProgressCallback | None,
    ) -> LoadResult:
        current = asyncio.current_task()
        try:
            try:
                return await asyncio.wait_for(
                    self._fetch(url, alt_text, on_progress),
                    timeout=self._config.total_timeout,
                )
            except (httpx.HTTPError, TimeoutError) as e:
                _log.warning(
                    "Download failed for %s: %s", url, f"{type(e).__name__}: {e}",
                )
                return Missing(alt_text)
        finally:
            if self._active_downloads.get(url) is current:
                del self._active_downloads[url]

    async def _fetch(
        self,
        url: str,
        alt_text: str,
        on_progress: ProgressCallback | None,
    ) -> LoadResult:
        client = await self._ensure_client()
        async with client.stream("GET", url, headers=_NO_CACHE_HEADERS) as response:
            if not 200 <= response.status_code < 300:
                _log.warning("HTTP %d for %s", response.status_code, url)
                return Missing(alt_text)

            content_type = response.headers.get("content-type")
            if content_type and not content_type.lower().startswith("image/"):
                _log.warning("Not an image (%s): %s", content_type, url)
                return Corrupt(alt_text)

            if on_progress is None:
                data = await response.aread()
            else:
                data = await self._read_with_progress(response, on_progress)

        try:
            image = self._decode(data)
        except DecodeError as e:
            _log.warning("Cannot decode %s: %s", url, e)
            return Corrupt(alt_text)

        evicted = self._remote_cache.put(url, image)
        if evicted is not None:
            _log.debug("Remote cache full, evicted %s", evicted)
        _report(on_progress, 1.0)
        return Success(image)

    @staticmethod
    async def _read_with_progress(
        response: httpx.Response,
        on_progress: ProgressCallback,
    ) -> bytes:
        try:
            expected = int(response.headers.get("content-length", ""))
        except ValueError:
            expected = 0

        chunks: list[bytes] = []
        received = 0
        last = 0.0
        async for chunk in response.aiter_bytes():
            chunks.append(chunk)
            received += len(chunk)
            if expected > 0:
                fraction = min(received / expected, _MAX_STREAM_PROGRESS)
                if fraction > last:
                    _report(on_progress, fraction)
                    last = fraction
        return b"".join(chunks)

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = self._client_factory()
            return self._client

    def _default_client_factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.connect_timeout),
            follow_redirects=True,
            headers={"User-Agent": self._config.user_agent},
        )

    # -- Cache management -----------------------------------------------------

    def clear_local_cache(self) -> None:
        self._local_cache.clear()

    def clear_remote_cache(self) -> None:
        self._remote_cache.clear()

    def clear_all(self) -> None:
        self._local_cache.clear()
        self._remote_cache.clear()

    def evict(self, key: str | Path) -> None:
        """Drop one image from both caches.

        *key* is a remote URL, a ``file://`` URL, or a local path.
        """
        if isinstance(key, Path):
            key = local_cache_key(key)
        self._local_cache.pop(key)
        self._remote_cache.pop(key)

    def cancel_all_downloads(self) -> None:
        """Cancel every in-flight download and forget them.

        Callers awaiting a cancelled download receive ``Missing``.
        """
        if self._active_downloads:
            _log.debug("Cancelling %d download(s)", len(self._active_downloads))
        for task in self._active_downloads.values():
            task.cancel()
        self._active_downloads.clear()

    # -- Bookmarks ------------------------------------------------------------

    def store_bookmark(self, path: Path) -> None:
        """Remember access to *path* for later loads (best effort)."""
        self._store_bookmark(path, path)

    def _store_bookmark(self, key: Path, target: Path) -> None:
        try:
            self._bookmarks[key] = self._access.create_bookmark(target)
        except BookmarkError as e:
            _log.debug("Bookmark for %s not stored: %s", target, e)

    def remove_bookmark(self, path: Path) -> None:
        self._bookmarks.pop(path, None)

    def clear_bookmarks(self) -> None:
        self._bookmarks.clear()
