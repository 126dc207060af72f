"""
Textual program buffer for text-mode sessions.

A flat string with view / replace / patch operations. It never touches a
ProgramGraph.
"""

from typing import List, Optional, Sequence

from .exceptions import AddressNotFound, StructureError


def resolve_range(view_range: Sequence[int], line_count: int) -> tuple:
    """Validate a 1-indexed inclusive ``[start, end]`` pair (``end == -1`` means last line)."""
    if not isinstance(view_range, (list, tuple)) or len(view_range) != 2 \
            or not all(isinstance(n, int) and not isinstance(n, bool) for n in view_range):
        raise StructureError(f"Line range must be [start, end], got {view_range!r}")
    start, end = view_range
    if end == -1:
        end = line_count
    if start < 1 or end < start or end > line_count:
        raise AddressNotFound(
            f"Line range {list(view_range)} is outside 1..{line_count}",
            address=list(view_range),
        )
    return start, end


def number_lines(text: str, view_range: Optional[Sequence[int]] = None) -> str:
    """``"N: line"`` rendering of ``text``, optionally restricted to a line range."""
    lines = text.split('\n')
    start, end = 1, len(lines)
    if view_range is not None:
        start, end = resolve_range(view_range, len(lines))
    return '\n'.join(f"{n}: {lines[n - 1]}" for n in range(start, end + 1))


class TextProgramBuffer:
    """Mutable script text."""

    def __init__(self, text: str = ""):
        self._text = text

    @property
    def text(self) -> str:
        return self._text

    def __len__(self) -> int:
        return len(self._text)

    def is_empty(self) -> bool:
        return not self._text.strip()

    def lines(self) -> List[str]:
        return self._text.split('\n')

    def line_count(self) -> int:
        return len(self.lines())

    def view(self, view_range: Optional[Sequence[int]] = None) -> str:
        if view_range is None:
            return self._text
        return number_lines(self._text, view_range)

    def replace(self, text: str) -> None:
        if not isinstance(text, str):
            raise StructureError("Replacement text must be a string")
        self._text = text

    def patch(self, old_str: str, new_str: str) -> None:
        """Substitute the first occurrence of ``old_str``."""
        if not isinstance(old_str, str) or not isinstance(new_str, str):
            raise StructureError("patch needs string old_str and new_str")
        if not old_str:
            raise StructureError("old_str must not be empty")
        index = self._text.find(old_str)
        if index < 0:
            raise AddressNotFound("old_str was not found in the program text", address=old_str)
        self._text = self._text[:index] + new_str + self._text[index + len(old_str):]

    def patch_lines(self, line_range: Sequence[int], new_str: str) -> None:
        """Replace the inclusive ``line_range`` with ``new_str``."""
        if not isinstance(new_str, str):
            raise StructureError("patch needs a string new_str")
        lines = self.lines()
        start, end = resolve_range(line_range, len(lines))
        lines[start - 1:end] = new_str.split('\n')
        self._text = '\n'.join(lines)

    def clone(self) -> 'TextProgramBuffer':
        return TextProgramBuffer(self._text)
