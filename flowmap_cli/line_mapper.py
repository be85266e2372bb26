"""Translate historical line numbers into present-day line numbers."""

from __future__ import annotations

import difflib
import re
from typing import List

from .models import LineMap, LineMapEntry

_LINE_SPLIT = re.compile(r"\r?\n")


def split_lines(text: str) -> List[str]:
    """Split on ``\\n`` or ``\\r\\n``; a trailing newline adds no extra line."""
    if not text:
        return []
    lines = _LINE_SPLIT.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def build_line_map(old_text: str, new_text: str) -> LineMap:
    """Map every line of *old_text* to its line in *new_text*, or mark it deleted.

    Unchanged runs keep a constant offset, removed runs (including the old
    side of a replacement) are ``deleted``, and pure insertions use no old
    line slots.
    """
    old_lines = split_lines(old_text)
    new_lines = split_lines(new_text)

    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)
    line_map: LineMap = {}
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            for offset in range(i2 - i1):
                line_map[i1 + offset + 1] = LineMapEntry("mapped", j1 + offset + 1)
        elif tag in ("delete", "replace"):
            for old_index in range(i1, i2):
                line_map[old_index + 1] = LineMapEntry("deleted")
        # "insert" touches only new lines
    return line_map
