"""Unit tests for the debounced render scheduler."""

import asyncio
import time

import pytest
from markdown_it.tree import SyntaxTreeNode

from mdpreview.config import RenderConfig
from mdpreview.scheduler import MarkdownItParser, MarkdownParser, RenderScheduler, RenderState

_DELAY = 0.05


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _RecordingParser:
    """Parser fake: records inputs, optionally fails or sleeps per input."""

    def __init__(self, fail: bool = False, delays: dict[str, float] | None = None) -> None:
        self.calls: list[str] = []
        self.fail = fail
        self.delays = delays or {}

    def parse(self, markdown: str) -> str:
        self.calls.append(markdown)
        time.sleep(self.delays.get(markdown, 0))
        if self.fail:
            raise ValueError("unparseable")
        return f"doc:{markdown}"


def _scheduler(parser=None, **kwargs) -> RenderScheduler:
    return RenderScheduler(
        parser or _RecordingParser(), RenderConfig(debounce_delay=_DELAY), **kwargs,
    )


# ---------------------------------------------------------------------------
# Debouncing
# ---------------------------------------------------------------------------


class TestDebounce:
    """Tests for debounce_render()."""

    @pytest.mark.asyncio
    async def test_burst_renders_once_with_last_content(self):
        parser = _RecordingParser()
        scheduler = _scheduler(parser)
        for i in range(1, 6):
            scheduler.debounce_render(f"edit {i}")
        assert scheduler.state is RenderState.SCHEDULED
        await scheduler.wait_idle()
        assert parser.calls == ["edit 5"]
        assert scheduler.rendered_document == "doc:edit 5"
        assert scheduler.state is RenderState.IDLE
        assert not scheduler.is_rendering

    @pytest.mark.asyncio
    async def test_nothing_rendered_before_delay(self):
        parser = _RecordingParser()
        scheduler = _scheduler(parser)
        scheduler.debounce_render("text")
        await asyncio.sleep(_DELAY / 5)
        assert parser.calls == []
        assert scheduler.rendered_document is None
        scheduler.close()

    @pytest.mark.asyncio
    async def test_cancel_pending_render(self):
        parser = _RecordingParser()
        scheduler = _scheduler(parser)
        scheduler.debounce_render("text")
        scheduler.cancel_pending_render()
        await asyncio.sleep(_DELAY * 3)
        assert parser.calls == []
        assert scheduler.state is RenderState.IDLE

    @pytest.mark.asyncio
    async def test_on_rendered_callback(self):
        seen = []
        scheduler = _scheduler(on_rendered=seen.append)
        scheduler.debounce_render("hello")
        await scheduler.wait_idle()
        assert seen == ["doc:hello"]

    def test_default_delay(self):
        assert RenderScheduler(_RecordingParser()).debounce_delay == 0.5


# ---------------------------------------------------------------------------
# Forced rendering
# ---------------------------------------------------------------------------


class TestForceRender:
    """Tests for force_render() and refresh_preview()."""

    @pytest.mark.asyncio
    async def test_renders_immediately(self):
        parser = _RecordingParser()
        scheduler = _scheduler(parser)
        trigger = scheduler.refresh_trigger
        task = scheduler.force_render("now")
        assert scheduler.is_rendering
        assert scheduler.state is RenderState.RENDERING
        await task
        assert parser.calls == ["now"]
        assert scheduler.rendered_document == "doc:now"
        assert scheduler.refresh_trigger != trigger
        assert not scheduler.is_rendering

    @pytest.mark.asyncio
    async def test_cancels_pending_debounce(self):
        parser = _RecordingParser()
        scheduler = _scheduler(parser)
        scheduler.debounce_render("old")
        await scheduler.force_render("new")
        await asyncio.sleep(_DELAY * 3)
        assert parser.calls == ["new"]
        assert scheduler.rendered_document == "doc:new"

    @pytest.mark.asyncio
    async def test_superseded_render_does_not_publish(self):
        parser = _RecordingParser(delays={"slow": 0.2})
        scheduler = _scheduler(parser)
        scheduler.force_render("slow")
        await asyncio.sleep(0.02)
        await scheduler.force_render("fast")
        assert scheduler.rendered_document == "doc:fast"
        await asyncio.sleep(0.3)
        assert scheduler.rendered_document == "doc:fast"
        assert not scheduler.is_rendering

    @pytest.mark.asyncio
    async def test_overlapping_renders_keep_newest(self):
        parser = _RecordingParser(delays={"slow": 0.1})
        scheduler = _scheduler(parser)
        slow = asyncio.create_task(scheduler.render("slow"))
        await asyncio.sleep(0.01)
        await scheduler.render("fast")
        await slow
        assert scheduler.rendered_document == "doc:fast"
        assert not scheduler.is_rendering

    @pytest.mark.asyncio
    async def test_refresh_preview_rerenders_same_content(self):
        parser = _RecordingParser()
        scheduler = _scheduler(parser)
        await scheduler.force_render("same")
        await scheduler.refresh_preview("same")
        assert parser.calls == ["same", "same"]

    @pytest.mark.asyncio
    async def test_close_before_render_starts_clears_flag(self):
        parser = _RecordingParser()
        scheduler = _scheduler(parser)
        scheduler.force_render("a")
        scheduler.close()
        await asyncio.sleep(_DELAY)
        assert parser.calls == []
        assert not scheduler.is_rendering
        assert scheduler.state is RenderState.IDLE

    @pytest.mark.asyncio
    async def test_cancelled_forced_task_clears_flag(self):
        scheduler = _scheduler()
        task = scheduler.force_render("a")
        task.cancel()
        await asyncio.sleep(_DELAY)
        assert not scheduler.is_rendering
        assert scheduler.state is RenderState.IDLE


# ---------------------------------------------------------------------------
# Parse failures
# ---------------------------------------------------------------------------


class TestParseFailure:
    """A failing parser never leaves the scheduler stuck."""

    @pytest.mark.asyncio
    async def test_failure_clears_document(self):
        parser = _RecordingParser()
        scheduler = _scheduler(parser)
        await scheduler.force_render("good")
        assert scheduler.rendered_document == "doc:good"

        parser.fail = True
        await scheduler.force_render("bad")
        assert scheduler.rendered_document is None
        assert not scheduler.is_rendering
        assert scheduler.state is RenderState.IDLE

    @pytest.mark.asyncio
    async def test_failure_logged(self, caplog):
        scheduler = _scheduler(_RecordingParser(fail=True))
        with caplog.at_level("ERROR", logger="scheduler"):
            await scheduler.force_render("bad")
        assert "unparseable" in caplog.text


# ---------------------------------------------------------------------------
# Default parser
# ---------------------------------------------------------------------------


class TestMarkdownItParser:
    """Tests for the markdown-it-py backed parser."""

    def test_is_markdown_parser(self):
        assert isinstance(MarkdownItParser(), MarkdownParser)

    def test_returns_syntax_tree(self):
        tree = MarkdownItParser().parse("# Title\n\n![alt](a.png)\n")
        assert isinstance(tree, SyntaxTreeNode)
        assert [n.type for n in tree.children] == ["heading", "paragraph"]

    def test_destination_not_percent_encoded(self):
        tree = MarkdownItParser().parse("![a](<my image.png>)\n")
        images = [n for n in tree.walk() if n.type == "image"]
        assert images[0].attrs["src"] == "my image.png"

    def test_tables_enabled(self):
        tree = MarkdownItParser().parse("| a | b |\n|---|---|\n| 1 | 2 |\n")
        assert tree.children[0].type == "table"

    @pytest.mark.asyncio
    async def test_scheduler_default_parser(self):
        scheduler = RenderScheduler(config=RenderConfig(debounce_delay=0))
        await scheduler.force_render("![x](y.png)")
        assert isinstance(scheduler.rendered_document, SyntaxTreeNode)
