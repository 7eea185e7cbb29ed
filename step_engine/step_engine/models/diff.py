"""Diff models produced by the graph differ and consumed by the renderer.

A :class:`StepDiff` mirrors the shape of the step graph but only keeps the
nodes that carry reportable differences.  Text-valued fields (arguments,
environment values, source contents) carry a :class:`TextDiff` edit script;
atomic values (platform, builder, output hashes) carry a
:class:`StringDelta`.

Every model exposes ``inverted()`` returning the same difference seen from
the other side, so ``diff(b, a) == diff(a, b).inverted()``.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from step_engine.config import Granularity
from step_engine.models.step import OutputSpec, StepId


class DiffStatus(str, Enum):
    """Top-level classification of a step comparison."""

    IDENTICAL = "IDENTICAL"
    CHANGED = "CHANGED"


class ChangeType(str, Enum):
    """Classification of a keyed entry (env var, output, input)."""

    ADDED = "ADDED"
    REMOVED = "REMOVED"
    MODIFIED = "MODIFIED"

    def inverted(self) -> ChangeType:
        if self is ChangeType.ADDED:
            return ChangeType.REMOVED
        if self is ChangeType.REMOVED:
            return ChangeType.ADDED
        return self


# ---------------------------------------------------------------------------
# Value-level deltas
# ---------------------------------------------------------------------------


class StringDelta(BaseModel):
    """An atomic before/after pair.  ``None`` means the value is absent."""

    old: str | None = None
    new: str | None = None

    def inverted(self) -> StringDelta:
        return StringDelta(old=self.new, new=self.old)


class EditKind(str, Enum):
    EQUAL = "equal"
    INSERT = "insert"
    DELETE = "delete"


class EditOp(BaseModel):
    """A run of units sharing one edit kind."""

    kind: EditKind
    units: list[str] = Field(default_factory=list)


class TextDiff(BaseModel):
    """Edit script turning an old unit sequence into a new one.

    ``binary`` is set instead of ``ops`` when the compared contents are not
    text.
    """

    granularity: Granularity = Granularity.LINE
    ops: list[EditOp] = Field(default_factory=list)
    binary: bool = False

    @property
    def is_identical(self) -> bool:
        return not self.binary and all(op.kind == EditKind.EQUAL for op in self.ops)

    def inverted(self) -> TextDiff:
        swapped = {EditKind.INSERT: EditKind.DELETE, EditKind.DELETE: EditKind.INSERT}
        ops: list[EditOp] = []
        pending_insert: list[EditOp] = []
        for op in self.ops:
            kind = swapped.get(op.kind, op.kind)
            if kind == EditKind.INSERT:
                # Keep deletions ahead of insertions inside a replaced region.
                pending_insert.append(EditOp(kind=kind, units=list(op.units)))
                continue
            if kind == EditKind.EQUAL:
                ops.extend(pending_insert)
                pending_insert = []
            ops.append(EditOp(kind=kind, units=list(op.units)))
        ops.extend(pending_insert)
        return TextDiff(granularity=self.granularity, ops=ops, binary=self.binary)


class DiffLineKind(str, Enum):
    CONTEXT = "context"
    ADDED = "added"
    REMOVED = "removed"
    SKIPPED = "skipped"


class DiffLine(BaseModel):
    """One entry of a context-windowed edit script."""

    kind: DiffLineKind
    text: str = ""
    count: int = 0


# ---------------------------------------------------------------------------
# Field-level diffs
# ---------------------------------------------------------------------------


class EnvVarDiff(BaseModel):
    """Difference for one environment variable."""

    key: str
    change: ChangeType
    old_value: str | None = None
    new_value: str | None = None
    value_diff: TextDiff | None = Field(
        default=None,
        description="Value-level edit script, present only for MODIFIED entries.",
    )

    def inverted(self) -> EnvVarDiff:
        return EnvVarDiff(
            key=self.key,
            change=self.change.inverted(),
            old_value=self.new_value,
            new_value=self.old_value,
            value_diff=self.value_diff.inverted() if self.value_diff is not None else None,
        )


class OutputDiff(BaseModel):
    """Difference for one declared output.  Output paths are never compared."""

    name: str
    change: ChangeType
    old: OutputSpec | None = None
    new: OutputSpec | None = None
    hash_algorithm: StringDelta | None = None
    hash: StringDelta | None = None

    def inverted(self) -> OutputDiff:
        return OutputDiff(
            name=self.name,
            change=self.change.inverted(),
            old=self.new,
            new=self.old,
            hash_algorithm=self.hash_algorithm.inverted() if self.hash_algorithm is not None else None,
            hash=self.hash.inverted() if self.hash is not None else None,
        )


class InputRef(BaseModel):
    """An input present on one side only, with its logical name."""

    name: str
    step_id: StepId


class SourceDiff(BaseModel):
    """Two aligned source inputs whose contents differ."""

    name: str
    old_id: StepId
    new_id: StepId
    content_diff: TextDiff

    def inverted(self) -> SourceDiff:
        return SourceDiff(
            name=self.name,
            old_id=self.new_id,
            new_id=self.old_id,
            content_diff=self.content_diff.inverted(),
        )


class SourcesDiff(BaseModel):
    """Differences between the plain source inputs of two steps."""

    added: list[InputRef] = Field(default_factory=list)
    removed: list[InputRef] = Field(default_factory=list)
    changed: list[SourceDiff] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)

    def inverted(self) -> SourcesDiff:
        return SourcesDiff(
            added=list(self.removed),
            removed=list(self.added),
            changed=[c.inverted() for c in self.changed],
        )


class ChangedInput(BaseModel):
    """An aligned pair of input steps that are not identical."""

    name: str
    old_id: StepId
    new_id: StepId
    diff: StepDiff
    added_outputs: list[str] = Field(
        default_factory=list,
        description="Output names consumed only on the new side.",
    )
    removed_outputs: list[str] = Field(
        default_factory=list,
        description="Output names consumed only on the old side.",
    )

    def inverted(self) -> ChangedInput:
        return ChangedInput(
            name=self.name,
            old_id=self.new_id,
            new_id=self.old_id,
            diff=self.diff.inverted(),
            added_outputs=list(self.removed_outputs),
            removed_outputs=list(self.added_outputs),
        )


# ---------------------------------------------------------------------------
# Step diff tree
# ---------------------------------------------------------------------------


class StepDiff(BaseModel):
    """Result of comparing two steps.

    ``IDENTICAL`` nodes carry only the compared identifiers.  ``CHANGED``
    nodes populate whichever fields differ; an unset field means that
    aspect of the two steps is equivalent.
    """

    status: DiffStatus
    old_id: StepId
    new_id: StepId
    platform_diff: StringDelta | None = None
    builder_diff: StringDelta | None = None
    args_diff: TextDiff | None = None
    env_diff: list[EnvVarDiff] | None = None
    output_diff: list[OutputDiff] | None = None
    sources_diff: SourcesDiff | None = None
    added_inputs: list[InputRef] = Field(default_factory=list)
    removed_inputs: list[InputRef] = Field(default_factory=list)
    changed_inputs: list[ChangedInput] = Field(default_factory=list)

    @classmethod
    def unchanged(cls, old_id: StepId, new_id: StepId) -> StepDiff:
        return cls(status=DiffStatus.IDENTICAL, old_id=old_id, new_id=new_id)

    @property
    def identical(self) -> bool:
        return self.status == DiffStatus.IDENTICAL

    @property
    def has_field_changes(self) -> bool:
        """True if any populated field would make this node ``CHANGED``."""
        return bool(
            self.platform_diff is not None
            or self.builder_diff is not None
            or self.args_diff is not None
            or self.env_diff
            or self.output_diff
            or (self.sources_diff is not None and not self.sources_diff.is_empty)
            or self.added_inputs
            or self.removed_inputs
            or self.changed_inputs
        )

    def inverted(self) -> StepDiff:
        if self.identical:
            return StepDiff.unchanged(self.new_id, self.old_id)
        return StepDiff(
            status=self.status,
            old_id=self.new_id,
            new_id=self.old_id,
            platform_diff=self.platform_diff.inverted() if self.platform_diff is not None else None,
            builder_diff=self.builder_diff.inverted() if self.builder_diff is not None else None,
            args_diff=self.args_diff.inverted() if self.args_diff is not None else None,
            env_diff=[e.inverted() for e in self.env_diff] if self.env_diff else None,
            output_diff=[o.inverted() for o in self.output_diff] if self.output_diff else None,
            sources_diff=self.sources_diff.inverted() if self.sources_diff is not None else None,
            added_inputs=list(self.removed_inputs),
            removed_inputs=list(self.added_inputs),
            changed_inputs=[c.inverted() for c in self.changed_inputs],
        )


ChangedInput.model_rebuild()
