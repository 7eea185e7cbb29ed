"""Sequence diff over lines, words or characters.

Text values are split into units according to a :class:`Granularity`, and
:func:`diff_units` produces a shortest edit script of EQUAL / DELETE /
INSERT runs.  Matching uses a longest-common-subsequence table; when
several scripts are equally short the walk keeps the earliest alignment,
so identical inputs produce identical scripts on every run.  Inside a
changed region deletions are emitted before insertions.

:func:`window` reduces an edit script to what a reader needs: the changed
units plus ``context_lines`` unchanged units around each change, with
longer unchanged runs collapsed into a single ``SKIPPED`` entry.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from step_engine.config import Granularity
from step_engine.models.diff import DiffLine, DiffLineKind, EditKind, EditOp, TextDiff

# Alternating runs of whitespace and non-whitespace, so that joining the
# units reproduces the input exactly.
_WORD_RE = re.compile(r"\s+|\S+")


# ---------------------------------------------------------------------------
# Unit splitting
# ---------------------------------------------------------------------------


def split_units(text: str, granularity: Granularity) -> list[str]:
    """Split *text* into diff units.  ``"".join(result) == text`` always holds."""
    if granularity == Granularity.LINE:
        return text.splitlines(keepends=True)
    if granularity == Granularity.WORD:
        return _WORD_RE.findall(text)
    return list(text)


# ---------------------------------------------------------------------------
# Edit scripts
# ---------------------------------------------------------------------------


def _lcs_table(old: Sequence[str], new: Sequence[str]) -> list[list[int]]:
    """``table[i][j]`` is the LCS length of ``old[i:]`` and ``new[j:]``."""
    width = len(new) + 1
    table = [[0] * width for _ in range(len(old) + 1)]
    for i in range(len(old) - 1, -1, -1):
        row, below = table[i], table[i + 1]
        unit = old[i]
        for j in range(len(new) - 1, -1, -1):
            if unit == new[j]:
                row[j] = below[j + 1] + 1
            else:
                row[j] = max(below[j], row[j + 1])
    return table


def diff_units(old: Sequence[str], new: Sequence[str]) -> list[EditOp]:
    """Compute a shortest edit script turning *old* into *new*.

    The script keeps a longest common subsequence as EQUAL runs, so its
    DELETE and INSERT units together number ``len(old) + len(new) - 2 *
    LCS``.  Units are matched as early as possible; on a tie a deletion
    is taken before an insertion.
    """
    prefix = 0
    limit = min(len(old), len(new))
    while prefix < limit and old[prefix] == new[prefix]:
        prefix += 1

    ops: list[EditOp] = []
    equal: list[str] = list(old[:prefix])
    deleted: list[str] = []
    inserted: list[str] = []

    def flush_changes() -> None:
        if deleted:
            ops.append(EditOp(kind=EditKind.DELETE, units=list(deleted)))
            deleted.clear()
        if inserted:
            ops.append(EditOp(kind=EditKind.INSERT, units=list(inserted)))
            inserted.clear()

    rest_old, rest_new = old[prefix:], new[prefix:]
    table = _lcs_table(rest_old, rest_new)
    i = j = 0
    while i < len(rest_old) or j < len(rest_new):
        if i < len(rest_old) and j < len(rest_new) and rest_old[i] == rest_new[j]:
            if deleted or inserted:
                flush_changes()
            equal.append(rest_old[i])
            i += 1
            j += 1
            continue
        if equal:
            ops.append(EditOp(kind=EditKind.EQUAL, units=equal))
            equal = []
        if j == len(rest_new) or (i < len(rest_old) and table[i + 1][j] >= table[i][j + 1]):
            deleted.append(rest_old[i])
            i += 1
        else:
            inserted.append(rest_new[j])
            j += 1

    flush_changes()
    if equal:
        ops.append(EditOp(kind=EditKind.EQUAL, units=equal))
    return ops


def diff_sequences(
    old: Sequence[str],
    new: Sequence[str],
    granularity: Granularity = Granularity.LINE,
) -> TextDiff:
    """Diff two pre-split unit sequences (e.g. builder arguments)."""
    return TextDiff(granularity=granularity, ops=diff_units(old, new))


def diff_text(old: str, new: str, granularity: Granularity = Granularity.LINE) -> TextDiff:
    """Split both strings at *granularity* and diff the resulting units."""
    return TextDiff(
        granularity=granularity,
        ops=diff_units(split_units(old, granularity), split_units(new, granularity)),
    )


def apply_edit_script(old: Sequence[str], ops: Sequence[EditOp]) -> list[str]:
    """Replay *ops* against *old* and return the resulting unit sequence.

    Raises
    ------
    ValueError
        If an EQUAL or DELETE run does not match *old* at its position.
    """
    result: list[str] = []
    pos = 0
    for op in ops:
        if op.kind == EditKind.INSERT:
            result.extend(op.units)
            continue
        expected = list(old[pos : pos + len(op.units)])
        if expected != op.units:
            raise ValueError(f"Edit script does not match input at unit {pos}")
        if op.kind == EditKind.EQUAL:
            result.extend(op.units)
        pos += len(op.units)
    if pos != len(old):
        raise ValueError(f"Edit script consumed {pos} of {len(old)} units")
    return result


# ---------------------------------------------------------------------------
# Context windowing
# ---------------------------------------------------------------------------


def window(ops: Sequence[EditOp], context_lines: int) -> list[DiffLine]:
    """Keep changed units plus *context_lines* unchanged units around them.

    * a leading unchanged run keeps its last ``c`` units,
    * a trailing unchanged run keeps its first ``c`` units,
    * an interior run longer than ``2c`` keeps ``c`` units on each side,

    and every dropped stretch becomes one ``SKIPPED`` entry carrying the
    number of units it stands for.  An all-EQUAL script yields nothing.
    """
    if context_lines < 0:
        raise ValueError("context_lines must be non-negative")
    if all(op.kind == EditKind.EQUAL for op in ops):
        return []

    c = context_lines
    last = len(ops) - 1
    lines: list[DiffLine] = []

    for index, op in enumerate(ops):
        if op.kind == EditKind.INSERT:
            lines.extend(DiffLine(kind=DiffLineKind.ADDED, text=unit) for unit in op.units)
            continue
        if op.kind == EditKind.DELETE:
            lines.extend(DiffLine(kind=DiffLineKind.REMOVED, text=unit) for unit in op.units)
            continue

        units = op.units
        if index == 0:
            head: list[str] = []
            tail = units[max(len(units) - c, 0) :] if c else []
        elif index == last:
            head = units[:c]
            tail = []
        elif len(units) <= 2 * c:
            head = units
            tail = []
        else:
            head = units[:c]
            tail = units[len(units) - c :]

        skipped = len(units) - len(head) - len(tail)
        lines.extend(DiffLine(kind=DiffLineKind.CONTEXT, text=unit) for unit in head)
        if skipped:
            lines.append(DiffLine(kind=DiffLineKind.SKIPPED, count=skipped))
        lines.extend(DiffLine(kind=DiffLineKind.CONTEXT, text=unit) for unit in tail)

    return lines
