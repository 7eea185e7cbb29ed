"""stepdiff CLI application -- Typer-based interface to the step engine.

Provides ``diff`` (explain why two build steps differ) and ``show``
(summarise one step).  The diff report goes to *stdout*; diagnostics,
errors and profiling tables go to *stderr* via Rich so that ``--json``
output on *stdout* stays machine-readable.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from step_engine.config import ColorMode, Granularity, Settings, load_settings
from step_engine.diff import DiffCache, diff_steps
from step_engine.exceptions import FormatError, ResolutionError, StepDiffError
from step_engine.parser import parse_step_file, serialize_step
from step_engine.resolver import resolve_input
from step_engine.store import FileSystemLoader, StepStore
from step_engine.telemetry import JSONFormatter, ProfileCollector

from stepdiff_cli.display import (
    IDENTICAL_MESSAGE,
    display_profile_stats,
    display_step,
    make_console,
    render_step_diff,
    resolve_color,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="stepdiff",
    help="stepdiff - Explain why two build steps differ",
    no_args_is_help=True,
)
console = Console(stderr=True)

_LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"

# Mutable global state populated by the Typer callback.
_settings: Settings | None = None


def _package_version() -> str:
    try:
        return version("stepdiff")
    except PackageNotFoundError:
        return "0.0.0+unknown"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"stepdiff {_package_version()}")
        raise typer.Exit()


def _configure_logging(verbose: int, structured: bool, debug: bool) -> None:
    """Configure the root logger once per invocation.

    WARNING by default, INFO with ``-v``, DEBUG with ``-vv`` or
    ``STEPDIFF_DEBUG``.  Structured mode replaces the text format with one
    JSON object per line.
    """
    if debug or verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = logging.StreamHandler(sys.stderr)
    if structured:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def _get_settings() -> Settings:
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase log verbosity (-v for INFO, -vv for DEBUG).",
    ),
    log_json: bool = typer.Option(
        False,
        "--log-json",
        help="Emit log records to stderr as single-line JSON.",
    ),
    profile: bool = typer.Option(
        False,
        "--profile",
        help="Print per-operation timing statistics to stderr on exit.",
    ),
    show_version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Global options applied to every command."""
    global _settings  # noqa: PLW0603
    try:
        _settings = load_settings()
    except ValueError as exc:
        console.print(f"[red]Invalid configuration: {escape(str(exc))}[/red]")
        raise typer.Exit(code=3) from exc

    _configure_logging(verbose, log_json or _settings.structured_logging, _settings.debug)

    if profile:
        ProfileCollector.reset()
        ctx.call_on_close(lambda: display_profile_stats(console, ProfileCollector.get_instance().get_all_stats()))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_or_exit(text: str, settings: Settings, gcroot_dir: Path) -> str:
    try:
        return resolve_input(text, settings, gcroot_dir)
    except ResolutionError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2) from exc


# ---------------------------------------------------------------------------
# diff
# ---------------------------------------------------------------------------


@app.command()
def diff(
    old: str = typer.Argument(..., help="Old side: .drv file, .nix file, flake#attr or store path."),
    new: str = typer.Argument(..., help="New side: .drv file, .nix file, flake#attr or store path."),
    granularity: Granularity | None = typer.Option(
        None,
        "--granularity",
        "-g",
        case_sensitive=False,
        help="Unit for environment and source diffs (default: line).",
    ),
    context: int | None = typer.Option(
        None,
        "--context",
        "-C",
        min=0,
        help="Unchanged units shown around each change (default: 3).",
    ),
    color: ColorMode | None = typer.Option(
        None,
        "--color",
        case_sensitive=False,
        help="Colourise the report (default: auto).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Write the diff tree as JSON to stdout; the report moves to stderr.",
    ),
    exit_code: bool = typer.Option(
        False,
        "--exit-code",
        help="Exit with status 1 when the steps differ.",
    ),
    no_sources: bool = typer.Option(
        False,
        "--no-sources",
        help="Do not compare the contents of source inputs.",
    ),
) -> None:
    """Explain why two build steps differ."""
    settings = _get_settings()
    effective_granularity = granularity or settings.granularity
    context_lines = context if context is not None else settings.context_lines
    color_mode = color or settings.color_mode
    read_sources = settings.read_sources and not no_sources

    report_stream = sys.stderr if json_output else sys.stdout
    use_color = resolve_color(
        color_mode,
        is_terminal=report_stream.isatty(),
        no_color=bool(os.environ.get("NO_COLOR")),
    )
    report = make_console(report_stream, use_color)

    with tempfile.TemporaryDirectory(prefix="stepdiff-") as gcroot_dir:
        old_id = _resolve_or_exit(old, settings, Path(gcroot_dir))
        new_id = _resolve_or_exit(new, settings, Path(gcroot_dir))
        logger.info("Comparing %s with %s", old_id, new_id, extra={"old_id": old_id, "new_id": new_id})

        store = StepStore(FileSystemLoader())
        cache = DiffCache()
        try:
            result = diff_steps(
                old_id,
                new_id,
                store,
                cache,
                granularity=effective_granularity,
                read_sources=read_sources,
            )
        except StepDiffError as exc:
            console.print(f"[red]Error: {escape(str(exc))}[/red]")
            raise typer.Exit(code=3) from exc

    if cache.provisional_pairs:
        logger.info("%d pair(s) were resolved provisionally as identical", len(cache.provisional_pairs))

    if json_output:
        sys.stdout.write(result.model_dump_json(indent=2, exclude_none=True) + "\n")

    if result.identical:
        report.print(IDENTICAL_MESSAGE)
    else:
        render_step_diff(report, result, context_lines=context_lines)

    if exit_code and not result.identical:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@app.command()
def show(
    target: str = typer.Argument(..., help=".drv file, .nix file, flake#attr or store path."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Write the parsed step as JSON to stdout.",
    ),
    canonical: bool = typer.Option(
        False,
        "--canonical",
        help="Write the step re-serialised in canonical form to stdout.",
    ),
) -> None:
    """Display a human-readable summary of one build step."""
    settings = _get_settings()

    with tempfile.TemporaryDirectory(prefix="stepdiff-") as gcroot_dir:
        step_id = _resolve_or_exit(target, settings, Path(gcroot_dir))
        try:
            step = parse_step_file(Path(step_id))
        except FormatError as exc:
            console.print(f"[red]Failed to parse {escape(step_id)}: {escape(str(exc))}[/red]")
            raise typer.Exit(code=3) from exc
        except OSError as exc:
            console.print(f"[red]Failed to read {escape(step_id)}: {escape(str(exc))}[/red]")
            raise typer.Exit(code=3) from exc

    if json_output:
        sys.stdout.write(step.model_dump_json(indent=2) + "\n")
    elif canonical:
        sys.stdout.write(serialize_step(step))
    else:
        display_step(console, step_id, step)
