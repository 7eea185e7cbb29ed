"""Tests for step_engine.diff.text_diff."""

from __future__ import annotations

import pytest

from step_engine.config import Granularity
from step_engine.diff.text_diff import (
    apply_edit_script,
    diff_sequences,
    diff_text,
    diff_units,
    split_units,
    window,
)
from step_engine.models.diff import DiffLine, DiffLineKind, EditKind, EditOp

# ---------------------------------------------------------------------------
# Unit splitting
# ---------------------------------------------------------------------------


class TestSplitUnits:
    def test_lines_keep_endings(self) -> None:
        assert split_units("a\nb\r\nc", Granularity.LINE) == ["a\n", "b\r\n", "c"]

    def test_words_alternate_with_whitespace(self) -> None:
        assert split_units("foo  bar\tbaz\n", Granularity.WORD) == ["foo", "  ", "bar", "\t", "baz", "\n"]

    def test_characters(self) -> None:
        assert split_units("ab c", Granularity.CHARACTER) == ["a", "b", " ", "c"]

    @pytest.mark.parametrize("granularity", list(Granularity))
    @pytest.mark.parametrize("text", ["", "x", "  leading", "trailing  \n\n", "mixed\tws \r\n end"])
    def test_join_reproduces_text(self, granularity: Granularity, text: str) -> None:
        assert "".join(split_units(text, granularity)) == text


# ---------------------------------------------------------------------------
# Edit scripts
# ---------------------------------------------------------------------------


def _edit_distance(old: list[str], new: list[str]) -> int:
    """Insert/delete distance by the textbook dynamic program."""
    rows = [[0] * (len(new) + 1) for _ in range(len(old) + 1)]
    for i in range(len(old) + 1):
        for j in range(len(new) + 1):
            if i == 0 or j == 0:
                rows[i][j] = i + j
            elif old[i - 1] == new[j - 1]:
                rows[i][j] = rows[i - 1][j - 1]
            else:
                rows[i][j] = min(rows[i - 1][j], rows[i][j - 1]) + 1
    return rows[len(old)][len(new)]


class TestDiffUnits:
    def test_identical_sequences(self) -> None:
        ops = diff_units(["a", "b"], ["a", "b"])
        assert ops == [EditOp(kind=EditKind.EQUAL, units=["a", "b"])]

    def test_empty_sequences(self) -> None:
        assert diff_units([], []) == []

    def test_pure_insert(self) -> None:
        assert diff_units([], ["x"]) == [EditOp(kind=EditKind.INSERT, units=["x"])]

    def test_pure_delete(self) -> None:
        assert diff_units(["x"], []) == [EditOp(kind=EditKind.DELETE, units=["x"])]

    def test_replacement_emits_delete_before_insert(self) -> None:
        ops = diff_units(["a", "b", "c"], ["a", "X", "c"])
        assert [op.kind for op in ops] == [EditKind.EQUAL, EditKind.DELETE, EditKind.INSERT, EditKind.EQUAL]
        assert ops[1].units == ["b"]
        assert ops[2].units == ["X"]

    def test_deterministic(self) -> None:
        old = ["x", "a", "x", "b", "x"]
        new = ["a", "x", "b", "x", "c"]
        assert diff_units(old, new) == diff_units(old, new)

    @pytest.mark.parametrize(
        ("old", "new"),
        [
            ("", "hello"),
            ("hello", ""),
            ("the quick brown fox", "the slow brown dog"),
            ("line one\nline two\nline three\n", "line one\nline 2\nline three\nline four\n"),
            ("aaaa", "aaba"),
        ],
    )
    @pytest.mark.parametrize("granularity", list(Granularity))
    def test_apply_reproduces_new(self, old: str, new: str, granularity: Granularity) -> None:
        old_units = split_units(old, granularity)
        ops = diff_units(old_units, split_units(new, granularity))
        assert "".join(apply_edit_script(old_units, ops)) == new

    @pytest.mark.parametrize(
        ("old", "new"),
        [
            ("aaa", "ababaa"),
            ("abcabba", "cbabac"),
            ("xaxbx", "axbxc"),
            ("kitten", "sitting"),
            ("", "abc"),
        ],
    )
    def test_script_is_shortest(self, old: str, new: str) -> None:
        ops = diff_text(old, new, Granularity.CHARACTER).ops
        changed = sum(len(op.units) for op in ops if op.kind != EditKind.EQUAL)
        assert changed == _edit_distance(list(old), list(new))

    def test_subsequence_needs_only_inserts(self) -> None:
        ops = diff_text("aaa", "ababaa", Granularity.CHARACTER).ops
        assert EditKind.DELETE not in [op.kind for op in ops]
        assert sum(len(op.units) for op in ops if op.kind == EditKind.INSERT) == 3

    def test_repeated_arguments_keep_every_old_unit(self) -> None:
        old = ["-x"] * 3
        new = ["-x", "-y", "-x", "-y", "-x", "-x"]
        diff = diff_sequences(old, new)
        assert EditKind.DELETE not in [op.kind for op in diff.ops]
        assert apply_edit_script(old, diff.ops) == new

    def test_ties_match_the_earliest_unit(self) -> None:
        assert diff_units(["a"], ["a", "a"]) == [
            EditOp(kind=EditKind.EQUAL, units=["a"]),
            EditOp(kind=EditKind.INSERT, units=["a"]),
        ]


class TestApplyEditScript:
    def test_mismatched_script_raises(self) -> None:
        ops = [EditOp(kind=EditKind.EQUAL, units=["z"])]
        with pytest.raises(ValueError, match="does not match"):
            apply_edit_script(["a"], ops)

    def test_incomplete_script_raises(self) -> None:
        ops = [EditOp(kind=EditKind.EQUAL, units=["a"])]
        with pytest.raises(ValueError, match="consumed"):
            apply_edit_script(["a", "b"], ops)


class TestDiffText:
    def test_records_granularity(self) -> None:
        diff = diff_text("a b", "a c", Granularity.WORD)
        assert diff.granularity == Granularity.WORD
        assert not diff.is_identical

    def test_identical_text(self) -> None:
        assert diff_text("same\n", "same\n").is_identical

    def test_sequences_diff_each_element_as_unit(self) -> None:
        diff = diff_sequences(["-e", "old.sh"], ["-e", "new.sh"])
        assert diff.ops == [
            EditOp(kind=EditKind.EQUAL, units=["-e"]),
            EditOp(kind=EditKind.DELETE, units=["old.sh"]),
            EditOp(kind=EditKind.INSERT, units=["new.sh"]),
        ]

    def test_inverted_swaps_insert_and_delete(self) -> None:
        diff = diff_text("a\nb\n", "a\nc\n")
        inverted = diff.inverted()
        assert [op.kind for op in inverted.ops] == [EditKind.EQUAL, EditKind.DELETE, EditKind.INSERT]
        assert inverted.ops[1].units == ["c\n"]
        assert inverted.ops[2].units == ["b\n"]
        assert "".join(apply_edit_script(["a\n", "c\n"], inverted.ops)) == "a\nb\n"


# ---------------------------------------------------------------------------
# Context windowing
# ---------------------------------------------------------------------------


def _ops_for_change_in_middle(before: int, after: int) -> list[EditOp]:
    return [
        EditOp(kind=EditKind.EQUAL, units=[f"pre{i}" for i in range(before)]),
        EditOp(kind=EditKind.DELETE, units=["old"]),
        EditOp(kind=EditKind.INSERT, units=["new"]),
        EditOp(kind=EditKind.EQUAL, units=[f"post{i}" for i in range(after)]),
    ]


def _kinds(lines: list[DiffLine]) -> list[DiffLineKind]:
    return [line.kind for line in lines]


class TestWindow:
    def test_zero_context_emits_no_unchanged_units(self) -> None:
        lines = window(_ops_for_change_in_middle(5, 5), 0)
        assert DiffLineKind.CONTEXT not in _kinds(lines)
        assert lines == [
            DiffLine(kind=DiffLineKind.SKIPPED, count=5),
            DiffLine(kind=DiffLineKind.REMOVED, text="old"),
            DiffLine(kind=DiffLineKind.ADDED, text="new"),
            DiffLine(kind=DiffLineKind.SKIPPED, count=5),
        ]

    def test_exact_context_each_side(self) -> None:
        lines = window(_ops_for_change_in_middle(5, 5), 2)
        assert lines == [
            DiffLine(kind=DiffLineKind.SKIPPED, count=3),
            DiffLine(kind=DiffLineKind.CONTEXT, text="pre3"),
            DiffLine(kind=DiffLineKind.CONTEXT, text="pre4"),
            DiffLine(kind=DiffLineKind.REMOVED, text="old"),
            DiffLine(kind=DiffLineKind.ADDED, text="new"),
            DiffLine(kind=DiffLineKind.CONTEXT, text="post0"),
            DiffLine(kind=DiffLineKind.CONTEXT, text="post1"),
            DiffLine(kind=DiffLineKind.SKIPPED, count=3),
        ]

    def test_short_runs_are_not_skipped(self) -> None:
        lines = window(_ops_for_change_in_middle(2, 1), 3)
        assert DiffLineKind.SKIPPED not in _kinds(lines)
        assert _kinds(lines).count(DiffLineKind.CONTEXT) == 3

    def test_interior_run_keeps_context_on_both_sides(self) -> None:
        ops = [
            EditOp(kind=EditKind.INSERT, units=["first"]),
            EditOp(kind=EditKind.EQUAL, units=[str(i) for i in range(10)]),
            EditOp(kind=EditKind.DELETE, units=["last"]),
        ]
        lines = window(ops, 2)
        assert lines == [
            DiffLine(kind=DiffLineKind.ADDED, text="first"),
            DiffLine(kind=DiffLineKind.CONTEXT, text="0"),
            DiffLine(kind=DiffLineKind.CONTEXT, text="1"),
            DiffLine(kind=DiffLineKind.SKIPPED, count=6),
            DiffLine(kind=DiffLineKind.CONTEXT, text="8"),
            DiffLine(kind=DiffLineKind.CONTEXT, text="9"),
            DiffLine(kind=DiffLineKind.REMOVED, text="last"),
        ]

    def test_interior_run_of_exactly_two_c_is_kept(self) -> None:
        ops = [
            EditOp(kind=EditKind.INSERT, units=["first"]),
            EditOp(kind=EditKind.EQUAL, units=["a", "b", "c", "d"]),
            EditOp(kind=EditKind.DELETE, units=["last"]),
        ]
        assert DiffLineKind.SKIPPED not in _kinds(window(ops, 2))

    def test_all_equal_yields_nothing(self) -> None:
        assert window([EditOp(kind=EditKind.EQUAL, units=["a", "b"])], 3) == []

    def test_negative_context_rejected(self) -> None:
        with pytest.raises(ValueError):
            window([], -1)
