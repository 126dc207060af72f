"""
Unit tests for the textual program buffer.

Tests cover:
  - Line-range resolution, including -1 for the last line
  - Numbered views of the whole buffer or a range
  - Whole-buffer replace and first-match patch
  - Line-range patch and clone independence
"""

import pytest

from game_editor_core.exceptions import AddressNotFound, StructureError
from game_editor_core.text_buffer import TextProgramBuffer, number_lines, resolve_range

# =============================================================================
# FIXTURES
# =============================================================================

SKETCH = "function setup() {\n  createCanvas(400, 400);\n}\n\nfunction draw() {\n  circle(10, 10, 5);\n}"


@pytest.fixture
def buffer():
    """Buffer holding a two-callback sketch."""
    return TextProgramBuffer(SKETCH)


# =============================================================================
# LINE RANGES
# =============================================================================

class TestRanges:
    """Test line-range resolution."""

    def test_resolve(self):
        assert resolve_range([2, 3], 5) == (2, 3)

    def test_end_of_buffer(self):
        """Test that -1 stands for the last line."""
        assert resolve_range([4, -1], 7) == (4, 7)

    def test_out_of_range(self):
        with pytest.raises(AddressNotFound):
            resolve_range([3, 9], 5)
        with pytest.raises(AddressNotFound):
            resolve_range([0, 2], 5)

    def test_reversed(self):
        with pytest.raises(AddressNotFound):
            resolve_range([4, 2], 5)

    def test_malformed(self):
        with pytest.raises(StructureError):
            resolve_range([1], 5)
        with pytest.raises(StructureError):
            resolve_range(['1', '2'], 5)

    def test_number_lines(self):
        assert number_lines("a\nb\nc", [2, -1]) == "2: b\n3: c"


# =============================================================================
# BUFFER COMMANDS
# =============================================================================

class TestTextProgramBuffer:
    """Test view / replace / patch."""

    def test_view_raw(self, buffer):
        assert buffer.view() == SKETCH

    def test_view_range(self, buffer):
        assert buffer.view([5, 6]) == "5: function draw() {\n6:   circle(10, 10, 5);"

    def test_empty(self):
        assert TextProgramBuffer().is_empty()
        assert TextProgramBuffer("  \n").is_empty()

    def test_replace(self, buffer):
        buffer.replace("noLoop();")
        assert buffer.text == "noLoop();"

    def test_replace_requires_string(self, buffer):
        with pytest.raises(StructureError):
            buffer.replace(None)
        assert buffer.text == SKETCH

    def test_patch_first_match(self):
        """Test that only the first occurrence is replaced."""
        buf = TextProgramBuffer("fill(0);\nfill(0);")
        buf.patch("fill(0);", "fill(255);")
        assert buf.text == "fill(255);\nfill(0);"

    def test_patch_missing(self, buffer):
        with pytest.raises(AddressNotFound):
            buffer.patch("square(", "rect(")
        assert buffer.text == SKETCH

    def test_patch_empty_old(self, buffer):
        with pytest.raises(StructureError):
            buffer.patch("", "x")

    def test_patch_lines(self, buffer):
        buffer.patch_lines([6, 6], "  circle(20, 20, 8);\n  square(0, 0, 4);")
        assert buffer.lines()[5:7] == ["  circle(20, 20, 8);", "  square(0, 0, 4);"]
        assert buffer.line_count() == 8

    def test_patch_lines_out_of_range(self, buffer):
        with pytest.raises(AddressNotFound):
            buffer.patch_lines([7, 12], "")
        assert buffer.text == SKETCH

    def test_clone_is_independent(self, buffer):
        twin = buffer.clone()
        twin.replace("")
        assert buffer.text == SKETCH
