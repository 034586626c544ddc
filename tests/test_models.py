"""Unit tests for image source variants and image references."""

from pathlib import Path

from mdpreview.destination import parse_destination
from mdpreview.models import (
    Absolute,
    Corrupt,
    DocumentRelative,
    ImageReference,
    Missing,
    Remote,
    Sidecar,
)


class TestImageSource:
    """Tests for the ImageSource helper properties."""

    def test_remote(self):
        source = Remote("https://example.com/a.png")
        assert source.is_remote
        assert not source.requires_security_scope
        assert source.resolved_path is None
        assert source.display_path == "https://example.com/a.png"

    def test_absolute(self):
        source = Absolute(Path("/pics/a.png"))
        assert not source.is_remote
        assert source.requires_security_scope
        assert source.resolved_path == Path("/pics/a.png")
        assert source.display_path == "/pics/a.png"

    def test_document_relative(self):
        source = DocumentRelative(Path("/docs/a.png"))
        assert source.requires_security_scope
        assert source.resolved_path == Path("/docs/a.png")

    def test_sidecar(self):
        unresolved = Sidecar("a.png")
        assert unresolved.resolved_path is None
        assert unresolved.display_path == "a.png"
        assert not unresolved.requires_security_scope
        assert not unresolved.is_remote

    def test_value_equality(self):
        assert Sidecar("a.png", Path("/x/a.png")) == Sidecar("a.png", Path("/x/a.png"))
        assert Sidecar("a.png") != Sidecar("a.png", Path("/x/a.png"))


class TestLoadResult:
    """Tests for the failure result variants."""

    def test_alt_text_carried(self):
        assert Missing("cat").alt_text == "cat"
        assert Corrupt("dog").alt_text == "dog"


class TestImageReference:
    """Tests for ImageReference.markdown_syntax."""

    def test_plain(self):
        ref = ImageReference("cat.png", alt_text="A cat")
        assert ref.markdown_syntax == "![A cat](cat.png)"

    def test_spaces_in_filename(self):
        ref = ImageReference("my cat.png", alt_text="cat")
        assert ref.markdown_syntax == "![cat](<my cat.png>)"

    def test_brackets_in_alt_text_escaped(self):
        ref = ImageReference("a.png", alt_text="see [1]")
        assert ref.markdown_syntax == "![see \\[1\\]](a.png)"

    def test_destination_round_trips(self):
        ref = ImageReference("photo (2).png")
        destination = ref.markdown_syntax[len("![]("):-1]
        assert parse_destination(destination) == "photo (2).png"
