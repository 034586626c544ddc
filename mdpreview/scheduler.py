"""Debounced markdown → AST rendering for the live preview.

The editor calls :meth:`RenderScheduler.debounce_render` on every text
change.  Each call supersedes the previous one; only when the text has
been quiet for the debounce delay is the latest content parsed.
:meth:`RenderScheduler.force_render` skips the delay (file open,
settings change, manual refresh).

States::

    IDLE ──debounce_render──▶ SCHEDULED ──timer fires──▶ RENDERING ──▶ IDLE
      └──────────────force_render──────────────────────────┘

The scheduler belongs to one event loop (the UI's).  Parsing runs in a
worker thread so long documents do not stall that loop.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode

from mdpreview.config import RenderConfig

_log = logging.getLogger("scheduler")


class RenderState(Enum):
    """Where the scheduler is in its render cycle."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    """A debounce timer is pending."""
    RENDERING = "rendering"
    """A parse is in progress."""


@runtime_checkable
class MarkdownParser(Protocol):
    """Turns markdown text into a document AST."""

    def parse(self, markdown: str) -> Any: ...


class MarkdownItParser:
    """CommonMark parser (markdown-it-py) producing a :class:`SyntaxTreeNode`.

    Tables and strikethrough are enabled.  Link normalization is turned
    off so image destinations reach the resolver as written (no
    percent-encoding of spaces or non-ASCII filenames).
    """

    def __init__(self) -> None:
        md = MarkdownIt("commonmark").enable("table").enable("strikethrough")
        md.normalizeLink = _identity  # type: ignore[method-assign]
        self._md = md

    def parse(self, markdown: str) -> SyntaxTreeNode:
        return SyntaxTreeNode(self._md.parse(markdown))


def _identity(url: str) -> str:
    return url


class RenderScheduler:
    """Debounce text edits into parse calls.

    Args:
        parser: The markdown parser; defaults to :class:`MarkdownItParser`.
        config: Debounce timing.
        on_rendered: Called with the new document after each successful
            render (and with ``None`` after a parse failure).
    """

    def __init__(
        self,
        parser: MarkdownParser | None = None,
        config: RenderConfig | None = None,
        on_rendered: Callable[[Any], None] | None = None,
    ) -> None:
        self._parser = parser or MarkdownItParser()
        self._delay = (config or RenderConfig()).debounce_delay
        self._on_rendered = on_rendered

        self.rendered_document: Any = None
        """Last successfully parsed document (``None`` before the first render)."""

        self._is_rendering = False
        self._refresh_trigger = uuid.uuid4()
        self._pending_content: str | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._render_task: asyncio.Task[None] | None = None
        self._generation = 0

    # -- State ----------------------------------------------------------------

    @property
    def is_rendering(self) -> bool:
        return self._is_rendering

    @property
    def refresh_trigger(self) -> uuid.UUID:
        """Token replaced on every forced render; observers re-subscribe on change."""
        return self._refresh_trigger

    @property
    def debounce_delay(self) -> float:
        return self._delay

    @property
    def state(self) -> RenderState:
        if self._is_rendering:
            return RenderState.RENDERING
        if self._debounce_task is not None and not self._debounce_task.done():
            return RenderState.SCHEDULED
        return RenderState.IDLE

    # -- Scheduling -----------------------------------------------------------

    def debounce_render(self, content: str) -> None:
        """Render *content* once no newer call arrives within the delay.

        Must be called from the event loop that owns the scheduler.
        """
        self.cancel_pending_render()
        self._pending_content = content
        self._debounce_task = asyncio.create_task(
            self._fire_after_delay(), name="debounced render",
        )

    async def _fire_after_delay(self) -> None:
        await asyncio.sleep(self._delay)
        content = self._pending_content
        self._pending_content = None
        self._debounce_task = None
        if content is None:
            return
        self._render_task = asyncio.current_task()
        _log.debug("Debounce fired (%d chars)", len(content))
        await self.render(content)

    def force_render(self, content: str) -> asyncio.Task[None]:
        """Render *content* now, dropping any pending or stale render.

        Returns the render task so callers may await it.
        """
        self.cancel_pending_render()
        if self._render_task is not None and not self._render_task.done():
            _log.debug("Cancelling stale render")
            self._render_task.cancel()

        self._refresh_trigger = uuid.uuid4()
        # Supersede the cancelled render so its cleanup leaves the flag alone.
        self._generation += 1
        self._is_rendering = True
        task = asyncio.create_task(self.render(content), name="forced render")
        task.add_done_callback(self._forced_render_done)
        self._render_task = task
        return task

    def _forced_render_done(self, task: asyncio.Task[None]) -> None:
        # Cancelled before render() ran: nothing else clears the flag.
        if task.cancelled() and task is self._render_task:
            self._is_rendering = False

    def refresh_preview(self, content: str) -> asyncio.Task[None]:
        """Manual refresh: re-render even if *content* is unchanged."""
        return self.force_render(content)

    def cancel_pending_render(self) -> None:
        """Cancel the debounce timer.  A render already running continues."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None
        self._pending_content = None

    def close(self) -> None:
        """Cancel the timer and any running render."""
        self.cancel_pending_render()
        if self._render_task is not None and not self._render_task.done():
            self._render_task.cancel()
        self._render_task = None
        self._generation += 1
        self._is_rendering = False

    async def wait_idle(self) -> None:
        """Wait until no timer is pending and no render is running."""
        while True:
            pending = [
                t for t in (self._debounce_task, self._render_task)
                if t is not None and not t.done()
            ]
            if not pending:
                return
            await asyncio.wait(pending)

    # -- Rendering ------------------------------------------------------------

    async def render(self, content: str) -> None:
        """Parse *content* and store the result as :attr:`rendered_document`.

        Not reentrant: overlapping calls on one scheduler are only
        prevented by the debounce/force logic above.  A render that has
        been superseded by a newer one does not publish its result.
        """
        self._generation += 1
        generation = self._generation
        self._is_rendering = True
        try:
            document = await asyncio.to_thread(self._parser.parse, content)
        except Exception as e:
            _log.error("Parse error: %s: %s", type(e).__name__, e)
            if generation == self._generation:
                self._publish(None)
        else:
            if generation == self._generation:
                _log.debug("Render completed (%d chars)", len(content))
                self._publish(document)
        finally:
            if generation == self._generation:
                self._is_rendering = False

    def _publish(self, document: Any) -> None:
        self.rendered_document = document
        if self._on_rendered is not None:
            self._on_rendered(document)
