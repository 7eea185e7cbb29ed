"""Rich output formatting for the stepdiff CLI.

All functions write to a :class:`rich.console.Console` supplied by the
caller.  Report lines are assembled from :class:`rich.text.Text` objects
rather than markup strings, so store paths and environment values that
contain ``[`` are printed verbatim.  Whether colour is emitted is decided
once, by :func:`resolve_color`, and baked into the console built by
:func:`make_console`.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import IO, Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from step_engine.config import ColorMode, Granularity
from step_engine.diff.text_diff import window
from step_engine.models.diff import (
    ChangedInput,
    ChangeType,
    DiffLine,
    DiffLineKind,
    EnvVarDiff,
    InputRef,
    OutputDiff,
    SourcesDiff,
    StepDiff,
    StringDelta,
    TextDiff,
)
from step_engine.models.step import Step, StepId, logical_name

# ---------------------------------------------------------------------------
# Styles
# ---------------------------------------------------------------------------

_ADDED_STYLE = "green"
_REMOVED_STYLE = "red"
_CHANGED_STYLE = "bold yellow"
_CONTEXT_STYLE = "dim"
_SECTION_STYLE = "bold"

_INDENT = "  "

IDENTICAL_MESSAGE = "The steps are identical."


# ---------------------------------------------------------------------------
# Console construction
# ---------------------------------------------------------------------------


def resolve_color(mode: ColorMode, *, is_terminal: bool, no_color: bool) -> bool:
    """Decide whether to emit colour.

    ``always`` and ``never`` are unconditional; ``auto`` colours only a
    terminal and only when ``NO_COLOR`` is not set.
    """
    if mode == ColorMode.ALWAYS:
        return True
    if mode == ColorMode.NEVER:
        return False
    return is_terminal and not no_color


def make_console(stream: IO[str] | None, color: bool) -> Console:
    """Build a console writing to *stream* with colour fixed to *color*.

    The console never inspects the stream or the environment itself.
    """
    return Console(
        file=stream,
        force_terminal=color,
        no_color=not color,
        color_system="standard" if color else None,
        markup=False,
        highlight=False,
        emoji=False,
        soft_wrap=True,
    )


# ---------------------------------------------------------------------------
# Line helpers
# ---------------------------------------------------------------------------


def _line(indent: int, *parts: str | tuple[str, str]) -> Text:
    text = Text(_INDENT * indent)
    for part in parts:
        if isinstance(part, tuple):
            text.append(part[0], style=part[1])
        else:
            text.append(part)
    return text


def _section(console: Console, title: str, indent: int) -> None:
    console.print(_line(indent, (f"{title}:", _SECTION_STYLE)))


def _skipped_label(count: int) -> str:
    return f"… {count} unchanged units skipped …"


def _display_value(value: str | None) -> str:
    return "(none)" if value is None else value


def _strip_eol(unit: str) -> str:
    return unit[:-1] if unit.endswith("\n") else unit


# ---------------------------------------------------------------------------
# Value-level renderers
# ---------------------------------------------------------------------------


def _render_delta(console: Console, delta: StringDelta, indent: int) -> None:
    console.print(_line(indent, (f"- {_display_value(delta.old)}", _REMOVED_STYLE)))
    console.print(_line(indent, (f"+ {_display_value(delta.new)}", _ADDED_STYLE)))


def _render_unit_lines(console: Console, lines: Iterable[DiffLine], indent: int) -> None:
    for entry in lines:
        if entry.kind == DiffLineKind.SKIPPED:
            console.print(_line(indent, (_skipped_label(entry.count), _CONTEXT_STYLE)))
        elif entry.kind == DiffLineKind.ADDED:
            console.print(_line(indent, (f"+ {_strip_eol(entry.text)}", _ADDED_STYLE)))
        elif entry.kind == DiffLineKind.REMOVED:
            console.print(_line(indent, (f"- {_strip_eol(entry.text)}", _REMOVED_STYLE)))
        else:
            console.print(_line(indent, (f"  {_strip_eol(entry.text)}", _CONTEXT_STYLE)))


def _render_inline(console: Console, lines: list[DiffLine], indent: int) -> None:
    """Render word/character diffs on one line as ``[-old-]{+new+}``."""
    text = Text(_INDENT * indent)
    pos = 0
    while pos < len(lines):
        kind = lines[pos].kind
        run_end = pos
        while run_end < len(lines) and lines[run_end].kind == kind:
            run_end += 1
        run = lines[pos:run_end]
        if kind == DiffLineKind.SKIPPED:
            text.append(_skipped_label(sum(e.count for e in run)), style=_CONTEXT_STYLE)
        elif kind == DiffLineKind.ADDED:
            text.append("{+" + "".join(e.text for e in run) + "+}", style=_ADDED_STYLE)
        elif kind == DiffLineKind.REMOVED:
            text.append("[-" + "".join(e.text for e in run) + "-]", style=_REMOVED_STYLE)
        else:
            text.append("".join(e.text for e in run))
        pos = run_end
    console.print(text)


def _render_text_diff(console: Console, diff: TextDiff, indent: int, context_lines: int) -> None:
    if diff.binary:
        console.print(_line(indent, ("Binary contents differ", _CHANGED_STYLE)))
        return
    lines = window(diff.ops, context_lines)
    if diff.granularity == Granularity.LINE:
        _render_unit_lines(console, lines, indent)
    else:
        _render_inline(console, lines, indent)


# ---------------------------------------------------------------------------
# Field renderers
# ---------------------------------------------------------------------------


def _render_env(console: Console, entries: list[EnvVarDiff], indent: int, context_lines: int) -> None:
    _section(console, "Environment", indent)
    for entry in entries:
        if entry.change == ChangeType.ADDED:
            console.print(_line(indent + 1, (f"+ {entry.key}={entry.new_value}", _ADDED_STYLE)))
        elif entry.change == ChangeType.REMOVED:
            console.print(_line(indent + 1, (f"- {entry.key}={entry.old_value}", _REMOVED_STYLE)))
        else:
            console.print(_line(indent + 1, (f"~ {entry.key}", _CHANGED_STYLE)))
            if entry.value_diff is not None:
                _render_text_diff(console, entry.value_diff, indent + 2, context_lines)


def _render_outputs(console: Console, entries: list[OutputDiff], indent: int) -> None:
    _section(console, "Outputs", indent)
    for entry in entries:
        if entry.change == ChangeType.ADDED:
            console.print(_line(indent + 1, (f"+ {entry.name}", _ADDED_STYLE)))
            continue
        if entry.change == ChangeType.REMOVED:
            console.print(_line(indent + 1, (f"- {entry.name}", _REMOVED_STYLE)))
            continue
        console.print(_line(indent + 1, (f"~ {entry.name}", _CHANGED_STYLE)))
        if entry.hash_algorithm is not None:
            console.print(_line(indent + 2, "Hash algorithm:"))
            _render_delta(console, entry.hash_algorithm, indent + 3)
        if entry.hash is not None:
            console.print(_line(indent + 2, "Hash:"))
            _render_delta(console, entry.hash, indent + 3)


def _render_refs(console: Console, refs: list[InputRef], indent: int, sign: str, style: str) -> None:
    for ref in refs:
        console.print(_line(indent, (f"{sign} {ref.name}", style), (f"  {ref.step_id}", _CONTEXT_STYLE)))


def _render_sources(console: Console, sources: SourcesDiff, indent: int, context_lines: int) -> None:
    _section(console, "Sources", indent)
    _render_refs(console, sources.removed, indent + 1, "-", _REMOVED_STYLE)
    _render_refs(console, sources.added, indent + 1, "+", _ADDED_STYLE)
    for changed in sources.changed:
        _render_pair_header(console, changed.old_id, changed.new_id, indent + 1)
        _render_text_diff(console, changed.content_diff, indent + 2, context_lines)


def _render_pair_header(console: Console, old_id: StepId, new_id: StepId, indent: int) -> None:
    old_name = logical_name(old_id)
    if old_name == logical_name(new_id):
        console.print(_line(indent, (f"~ {old_name}", _CHANGED_STYLE)))
        return
    console.print(_line(indent, (f"- {old_id}", _REMOVED_STYLE)))
    console.print(_line(indent, (f"+ {new_id}", _ADDED_STYLE)))


def _render_changed_input(console: Console, changed: ChangedInput, indent: int) -> None:
    _render_pair_header(console, changed.old_id, changed.new_id, indent)
    if changed.removed_outputs or changed.added_outputs:
        console.print(_line(indent + 1, "Consumed outputs:"))
        for name in changed.removed_outputs:
            console.print(_line(indent + 2, (f"- {name}", _REMOVED_STYLE)))
        for name in changed.added_outputs:
            console.print(_line(indent + 2, (f"+ {name}", _ADDED_STYLE)))


def _render_fields(console: Console, diff: StepDiff, indent: int, context_lines: int) -> None:
    if diff.platform_diff is not None:
        _section(console, "Platform", indent)
        _render_delta(console, diff.platform_diff, indent + 1)
    if diff.builder_diff is not None:
        _section(console, "Builder", indent)
        _render_delta(console, diff.builder_diff, indent + 1)
    if diff.args_diff is not None:
        _section(console, "Arguments", indent)
        _render_text_diff(console, diff.args_diff, indent + 1, context_lines)
    if diff.env_diff:
        _render_env(console, diff.env_diff, indent, context_lines)
    if diff.output_diff:
        _render_outputs(console, diff.output_diff, indent)
    if diff.sources_diff is not None and not diff.sources_diff.is_empty:
        _render_sources(console, diff.sources_diff, indent, context_lines)
    if diff.removed_inputs:
        _section(console, "Removed inputs", indent)
        _render_refs(console, diff.removed_inputs, indent + 1, "-", _REMOVED_STYLE)
    if diff.added_inputs:
        _section(console, "Added inputs", indent)
        _render_refs(console, diff.added_inputs, indent + 1, "+", _ADDED_STYLE)
    if diff.changed_inputs:
        _section(console, "Changed inputs", indent)


def _render_body(console: Console, diff: StepDiff, indent: int, context_lines: int) -> None:
    """Render *diff* and its changed inputs, depth-first, without recursion."""
    _render_fields(console, diff, indent, context_lines)
    pending = [(changed, indent + 1) for changed in reversed(diff.changed_inputs)]
    while pending:
        changed, level = pending.pop()
        _render_changed_input(console, changed, level)
        if changed.diff.identical:
            continue
        _render_fields(console, changed.diff, level + 1, context_lines)
        pending.extend((nested, level + 2) for nested in reversed(changed.diff.changed_inputs))


# ---------------------------------------------------------------------------
# Public renderers
# ---------------------------------------------------------------------------


def render_step_diff(console: Console, diff: StepDiff, *, context_lines: int = 3) -> None:
    """Render a diff tree depth-first.

    Parameters
    ----------
    console:
        Rich console to write to.
    diff:
        Result of :func:`step_engine.diff.diff_steps`.  IDENTICAL trees
        render nothing.
    context_lines:
        Unchanged units kept around each change in text diffs.
    """
    if diff.identical:
        return
    _render_pair_header(console, diff.old_id, diff.new_id, 0)
    _render_body(console, diff, 1, context_lines)


def display_step(console: Console, step_id: StepId, step: Step) -> None:
    """Render a readable summary of one parsed step."""
    console.print(_line(0, (logical_name(step_id), _SECTION_STYLE), (f"  {step_id}", _CONTEXT_STYLE)))
    console.print(_line(1, "Platform: ", step.platform))
    console.print(_line(1, "Builder:  ", step.builder))

    outputs = Table(title="Outputs", show_lines=False, pad_edge=True, expand=False)
    outputs.add_column("Name", style="bold")
    outputs.add_column("Path")
    outputs.add_column("Hash")
    for name, spec in step.outputs.items():
        digest = f"{spec.hash_algorithm}:{spec.hash}" if spec.hash else "-"
        outputs.add_row(name, spec.path, digest)
    console.print(outputs)

    if step.args:
        _section(console, "Arguments", 1)
        for arg in step.args:
            console.print(_line(2, arg))

    if step.input_steps:
        inputs = Table(title="Input steps", show_lines=False, pad_edge=True, expand=False)
        inputs.add_column("Name", style="bold")
        inputs.add_column("Outputs")
        inputs.add_column("Step")
        for input_id, consumed in sorted(step.input_steps.items(), key=lambda item: logical_name(item[0])):
            inputs.add_row(logical_name(input_id), ", ".join(consumed), input_id)
        console.print(inputs)

    if step.input_sources:
        _section(console, "Sources", 1)
        for source in step.input_sources:
            console.print(_line(2, source))

    console.print(_line(1, f"Environment: {len(step.env)} variables"))


def display_profile_stats(console: Console, stats: list[dict[str, Any]]) -> None:
    """Render per-operation timing statistics collected with ``--profile``."""
    if not stats:
        console.print(_line(0, ("No operations were profiled.", _CONTEXT_STYLE)))
        return

    table = Table(title="Profile", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Operation", style="bold")
    table.add_column("Calls", justify="right")
    table.add_column("Total (ms)", justify="right")
    table.add_column("Mean (ms)", justify="right")
    table.add_column("Max (ms)", justify="right")
    for row in stats:
        table.add_row(
            row["operation"],
            str(row["count"]),
            f"{row['total_ms']:.3f}",
            f"{row['mean_ms']:.3f}",
            f"{row['max_ms']:.3f}",
        )
    console.print(table)
