"""Cross-side alignment of step inputs by logical name.

Input identifiers are hash-qualified, so the same logical input usually has
a different identifier on each side.  This module pairs them up by the
name that survives once the hash is stripped.

When several identifiers share a logical name on one side (for instance
two builds of the same package consumed with different output sets), the
entries are paired in order of first appearance and any surplus on the
larger side is reported as added or removed.  The graph differ only sees
the resulting :class:`Alignment`.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from step_engine.models.step import StepId, logical_name


@dataclass(frozen=True)
class AlignedPair:
    name: str
    old_id: StepId
    new_id: StepId


@dataclass(frozen=True)
class UnmatchedEntry:
    name: str
    step_id: StepId


@dataclass
class Alignment:
    """Result of :func:`align_by_logical_name`, ordered by logical name."""

    pairs: list[AlignedPair] = field(default_factory=list)
    removed: list[UnmatchedEntry] = field(default_factory=list)
    added: list[UnmatchedEntry] = field(default_factory=list)


def group_by_logical_name(step_ids: Iterable[StepId]) -> dict[str, list[StepId]]:
    """Group identifiers by logical name, preserving order of appearance."""
    groups: dict[str, list[StepId]] = {}
    for step_id in step_ids:
        groups.setdefault(logical_name(step_id), []).append(step_id)
    return groups


def align_by_logical_name(
    old_ids: Iterable[StepId],
    new_ids: Iterable[StepId],
) -> Alignment:
    """Pair *old_ids* with *new_ids* by logical name.

    Parameters
    ----------
    old_ids, new_ids:
        Identifiers from each side, in their declared order.

    Returns
    -------
    Alignment
        Paired entries plus the one-sided leftovers.  Names are visited in
        sorted order so the result does not depend on hash ordering across
        names.
    """
    old_groups = group_by_logical_name(old_ids)
    new_groups = group_by_logical_name(new_ids)
    alignment = Alignment()

    for name in sorted(old_groups.keys() | new_groups.keys()):
        olds = old_groups.get(name, [])
        news = new_groups.get(name, [])
        paired = min(len(olds), len(news))
        for old_id, new_id in zip(olds[:paired], news[:paired]):
            alignment.pairs.append(AlignedPair(name=name, old_id=old_id, new_id=new_id))
        alignment.removed.extend(UnmatchedEntry(name=name, step_id=sid) for sid in olds[paired:])
        alignment.added.extend(UnmatchedEntry(name=name, step_id=sid) for sid in news[paired:])

    return alignment
