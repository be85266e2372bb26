"""Tests for diff-based line mapping."""

from flowmap_cli.line_mapper import build_line_map, split_lines
from flowmap_cli.models import LineMapEntry


class TestSplitLines:
    """Line splitting shared by every content consumer."""

    def test_trailing_newline_adds_no_line(self):
        assert split_lines("a\nb\n") == ["a", "b"]

    def test_crlf(self):
        assert split_lines("a\r\nb") == ["a", "b"]

    def test_empty(self):
        assert split_lines("") == []


class TestBuildLineMap:
    """Old line -> new line translation."""

    def test_identity(self, numbered_source):
        line_map = build_line_map(numbered_source, numbered_source)
        assert len(line_map) == 20
        assert all(entry == LineMapEntry("mapped", n) for n, entry in line_map.items())

    def test_insertion_above_shifts_following_lines(self, numbered_source):
        new = "".join(f"inserted_{n}\n" for n in range(5)) + numbered_source
        line_map = build_line_map(numbered_source, new)
        assert line_map[1] == LineMapEntry("mapped", 6)
        assert line_map[10] == LineMapEntry("mapped", 15)
        assert line_map[20] == LineMapEntry("mapped", 25)

    def test_insertion_below_keeps_earlier_lines(self, numbered_source):
        new = numbered_source.replace("value_15 = 15\n", "value_15 = 15\nextra = 0\n")
        line_map = build_line_map(numbered_source, new)
        assert line_map[10] == LineMapEntry("mapped", 10)
        assert line_map[16] == LineMapEntry("mapped", 17)

    def test_deleted_line(self, numbered_source):
        new = numbered_source.replace("value_10 = 10\n", "")
        line_map = build_line_map(numbered_source, new)
        assert line_map[10].status == "deleted"
        assert line_map[10].new_line is None
        assert line_map[11] == LineMapEntry("mapped", 10)

    def test_replaced_line_counts_as_deleted(self, numbered_source):
        new = numbered_source.replace("value_10 = 10", "value_10 = 100")
        line_map = build_line_map(numbered_source, new)
        assert line_map[10].status == "deleted"
        assert line_map[9] == LineMapEntry("mapped", 9)
        assert line_map[11] == LineMapEntry("mapped", 11)

    def test_every_old_line_present(self, numbered_source):
        new = "head\n" + numbered_source.replace("value_3 = 3\n", "")
        line_map = build_line_map(numbered_source, new)
        assert sorted(line_map) == list(range(1, 21))
