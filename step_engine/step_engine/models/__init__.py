"""Domain models for the step engine."""

from step_engine.models.diff import (
    ChangedInput,
    ChangeType,
    DiffLine,
    DiffLineKind,
    DiffStatus,
    EditKind,
    EditOp,
    EnvVarDiff,
    InputRef,
    OutputDiff,
    SourceDiff,
    SourcesDiff,
    StepDiff,
    StringDelta,
    TextDiff,
)
from step_engine.models.step import OutputSpec, Step, StepId, logical_name

__all__ = [
    "ChangeType",
    "ChangedInput",
    "DiffLine",
    "DiffLineKind",
    "DiffStatus",
    "EditKind",
    "EditOp",
    "EnvVarDiff",
    "InputRef",
    "OutputDiff",
    "OutputSpec",
    "SourceDiff",
    "SourcesDiff",
    "Step",
    "StepDiff",
    "StepId",
    "StringDelta",
    "TextDiff",
    "logical_name",
]
