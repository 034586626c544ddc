"""Unit tests for drag-and-drop and paste ingestion."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

from mdpreview.ingest import (
    ImageDropHandler,
    PasteboardContents,
    alt_text_for,
    pasted_filename,
)
from mdpreview.sidecar import SidecarAssetManager
from tests.conftest import RecordingAccess, make_document, make_png, write_png

_NOW = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _handler(tmp_path: Path, configured: bool = True, **kwargs):
    """Build a drop handler for a document in *tmp_path*.

    Returns ``(handler, inserted_snippets, sidecar)``.
    """
    sidecar = SidecarAssetManager()
    if configured:
        sidecar.configure(make_document(tmp_path / "doc"))
    inserted: list[str] = []
    handler = ImageDropHandler(
        sidecar, inserted.append, clock=lambda: _NOW, **kwargs,
    )
    return handler, inserted, sidecar


# ---------------------------------------------------------------------------
# Naming helpers
# ---------------------------------------------------------------------------


class TestNaming:
    """Tests for pasted_filename() and alt_text_for()."""

    def test_pasted_filename(self):
        assert pasted_filename("image/png", _NOW) == "pasted-2024-01-15_10-30-00.png"

    def test_pasted_filename_uses_utc(self):
        now = datetime(2024, 1, 15, 12, 30, 0, tzinfo=timezone(timedelta(hours=2)))
        assert pasted_filename("image/png", now) == "pasted-2024-01-15_10-30-00.png"

    def test_pasted_filename_jpeg(self):
        assert pasted_filename("image/jpeg", _NOW).endswith(".jpeg")

    def test_pasted_filename_unknown_type(self):
        assert pasted_filename(None, _NOW).endswith(".png")

    def test_alt_text(self):
        assert alt_text_for(Path("/x/my_cat-photo.png")) == "my cat photo"


# ---------------------------------------------------------------------------
# Capability checks
# ---------------------------------------------------------------------------


class TestCanHandle:
    """Tests for can_handle_drop() and can_handle_paste()."""

    def test_drop_with_image(self):
        assert ImageDropHandler.can_handle_drop([Path("a.txt"), Path("b.png")])

    def test_drop_without_image(self):
        assert not ImageDropHandler.can_handle_drop([Path("a.txt")])
        assert not ImageDropHandler.can_handle_drop([])

    def test_paste_image_data(self):
        assert ImageDropHandler.can_handle_paste(PasteboardContents({"image/png": b"x"}))

    def test_paste_image_file(self):
        assert ImageDropHandler.can_handle_paste(PasteboardContents(paths=[Path("a.jpg")]))

    def test_paste_text_only(self):
        assert not ImageDropHandler.can_handle_paste(PasteboardContents({"text/plain": b"hi"}))


# ---------------------------------------------------------------------------
# Drop
# ---------------------------------------------------------------------------


class TestHandleDrop:
    """Tests for handle_drop()."""

    def test_single_image(self, tmp_path):
        handler, inserted, sidecar = _handler(tmp_path)
        source = write_png(tmp_path / "src" / "my_cat.png")
        assert handler.handle_drop([source]) is True
        assert inserted == ["![my cat](my_cat.png)"]
        assert sidecar.image_exists("my_cat.png")

    def test_non_images_ignored(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path)
        text = tmp_path / "notes.txt"
        text.write_text("hi")
        assert handler.handle_drop([text]) is False
        assert inserted == []

    def test_multiple_images_in_order(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path)
        a = write_png(tmp_path / "src" / "a.png")
        b = write_png(tmp_path / "src" / "b.png")
        assert handler.handle_drop([a, b]) is True
        assert inserted == ["![a](a.png)", "![b](b.png)"]

    def test_failed_item_skipped(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path)
        a = write_png(tmp_path / "src" / "a.png")
        missing = tmp_path / "src" / "gone.png"
        assert handler.handle_drop([missing, a]) is True
        assert inserted == ["![a](a.png)"]

    def test_all_failed(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path, configured=False)
        a = write_png(tmp_path / "src" / "a.png")
        assert handler.handle_drop([a]) is False
        assert inserted == []

    def test_same_name_twice(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path)
        a = write_png(tmp_path / "src" / "shot.png")
        handler.handle_drop([a])
        handler.handle_drop([a])
        assert inserted == ["![shot](shot.png)", "![shot](shot-1.png)"]

    def test_file_access_scoped(self, tmp_path):
        access = RecordingAccess()
        handler, _, _ = _handler(tmp_path, access=access)
        a = write_png(tmp_path / "src" / "a.png")
        handler.handle_drop([a])
        assert access.started == [a]
        assert access.stopped == [a]

    def test_undo_grouping(self, tmp_path):
        undo = MagicMock()
        handler, _, _ = _handler(tmp_path, undo=undo)
        a = write_png(tmp_path / "src" / "a.png")
        b = write_png(tmp_path / "src" / "b.png")
        handler.handle_drop([a, b])
        undo.begin_undo_grouping.assert_called_once_with("Insert Images")
        undo.end_undo_grouping.assert_called_once_with()


# ---------------------------------------------------------------------------
# Paste
# ---------------------------------------------------------------------------


class TestHandlePaste:
    """Tests for handle_paste()."""

    def test_png_data(self, tmp_path):
        handler, inserted, sidecar = _handler(tmp_path)
        data = make_png()
        assert handler.handle_paste(PasteboardContents({"image/png": data})) is True
        name = "pasted-2024-01-15_10-30-00.png"
        assert inserted == [f"![Pasted Image]({name})"]
        assert sidecar.resolve_image(name).read_bytes() == data

    def test_prefers_png_over_other_types(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path)
        contents = PasteboardContents({"image/jpeg": b"jpeg", "image/png": b"png"})
        handler.handle_paste(contents)
        assert inserted[0].endswith(".png)")

    def test_other_image_type(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path)
        handler.handle_paste(PasteboardContents({"image/gif": b"GIF89a"}))
        assert inserted[0].endswith(".gif)")

    def test_falls_back_to_files(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path)
        a = write_png(tmp_path / "src" / "copied.png")
        assert handler.handle_paste(PasteboardContents(paths=[a])) is True
        assert inserted == ["![copied](copied.png)"]

    def test_nothing_usable(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path)
        assert handler.handle_paste(PasteboardContents({"text/plain": b"hi"})) is False
        assert inserted == []

    def test_without_sidecar(self, tmp_path):
        handler, inserted, _ = _handler(tmp_path, configured=False)
        assert handler.handle_paste(PasteboardContents({"image/png": make_png()})) is False
        assert inserted == []

    def test_undo_group_named(self, tmp_path):
        undo = MagicMock()
        handler, _, _ = _handler(tmp_path, undo=undo)
        handler.handle_paste(PasteboardContents({"image/png": make_png()}))
        undo.begin_undo_grouping.assert_called_once_with("Paste Image")
        undo.end_undo_grouping.assert_called_once_with()
