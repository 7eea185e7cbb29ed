"""Graph, input-alignment and text diffing for build steps."""

from step_engine.diff.graph_diff import DiffCache, GraphDiffer, diff_steps
from step_engine.diff.matching import Alignment, align_by_logical_name
from step_engine.diff.text_diff import (
    apply_edit_script,
    diff_sequences,
    diff_text,
    diff_units,
    split_units,
    window,
)

__all__ = [
    "Alignment",
    "DiffCache",
    "GraphDiffer",
    "align_by_logical_name",
    "apply_edit_script",
    "diff_sequences",
    "diff_steps",
    "diff_text",
    "diff_units",
    "split_units",
    "window",
]
