"""Turn a user-supplied input into the identifier of a root step.

An input is one of four kinds, decided once by :func:`classify_input`:

* ``StepFileInput``: a path ending in ``.drv``, used as-is;
* ``FlakeRefInput``: anything containing ``#``, e.g. ``.#hello``; the flake
  is locked with ``nix flake metadata --json`` and the attribute is
  instantiated from the locked store path;
* ``ExpressionFileInput``: a path ending in ``.nix``, instantiated with
  ``nix-instantiate``;
* ``RealizedPathInput``: anything else, taken to be a realised store path
  whose deriver is looked up with ``nix-store --query --deriver``.

All interaction with the nix tools goes through :func:`subprocess.run` with
an explicit timeout, and every failure surfaces as a
:class:`~step_engine.exceptions.ResolutionError`.  The rest of the engine
only ever sees the resulting :data:`StepId`.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from step_engine.config import Settings
from step_engine.exceptions import ResolutionError
from step_engine.models.step import StepId

logger = logging.getLogger(__name__)

_STEP_SUFFIX = ".drv"
_EXPRESSION_SUFFIX = ".nix"
_EXPERIMENTAL_FEATURES = ["--extra-experimental-features", "nix-command flakes"]
_UNKNOWN_DERIVER = "unknown-deriver"


# ---------------------------------------------------------------------------
# Input variants
# ---------------------------------------------------------------------------


class StepFileInput(BaseModel):
    """A step description file given directly."""

    model_config = ConfigDict(frozen=True)

    path: str


class ExpressionFileInput(BaseModel):
    """A ``.nix`` file evaluating to a single step."""

    model_config = ConfigDict(frozen=True)

    path: str


class FlakeRefInput(BaseModel):
    """A ``flake#attribute`` reference."""

    model_config = ConfigDict(frozen=True)

    flake: str
    attribute: str


class RealizedPathInput(BaseModel):
    """A realised output path whose producing step is looked up."""

    model_config = ConfigDict(frozen=True)

    path: str


ResolverInput = StepFileInput | ExpressionFileInput | FlakeRefInput | RealizedPathInput


def classify_input(text: str) -> ResolverInput:
    """Decide which kind of input *text* is.

    Raises
    ------
    ResolutionError
        If *text* is empty or a flake reference lacks its attribute.
    """
    if not text.strip():
        raise ResolutionError(text, "input is empty")
    if text.endswith(_STEP_SUFFIX):
        return StepFileInput(path=text)
    if "#" in text:
        flake, _, attribute = text.partition("#")
        if not attribute:
            raise ResolutionError(text, "flake reference has no attribute after '#'")
        return FlakeRefInput(flake=flake or ".", attribute=attribute)
    if text.endswith(_EXPRESSION_SUFFIX):
        return ExpressionFileInput(path=text)
    return RealizedPathInput(path=text)


# ---------------------------------------------------------------------------
# Subprocess helpers
# ---------------------------------------------------------------------------


def _run_nix(cmd: list[str], source: str, timeout: float) -> str:
    """Execute a nix command and return its stripped stdout.

    Raises
    ------
    ResolutionError
        On non-zero exit, timeout, or if the executable cannot be started.
    """
    logger.debug("Running %s", " ".join(cmd), extra={"source": source})
    try:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise ResolutionError(
            source, f"{cmd[0]} failed with exit code {exc.returncode}: {stderr}"
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise ResolutionError(source, f"{cmd[0]} timed out after {timeout:g}s") from exc
    except FileNotFoundError as exc:
        raise ResolutionError(
            source, f"{cmd[0]} executable not found. Ensure nix is installed and on PATH."
        ) from exc
    return completed.stdout.strip()


def _instantiate(args: list[str], source: str, settings: Settings, gcroot_dir: Path) -> StepId:
    """Run ``nix-instantiate`` with an indirect GC root and follow the root link."""
    # One subdirectory per call so several roots can share gcroot_dir.
    gcroot = Path(tempfile.mkdtemp(dir=gcroot_dir)) / "result"
    cmd = [
        settings.nix_instantiate_bin,
        *args,
        *_EXPERIMENTAL_FEATURES,
        "--add-root",
        str(gcroot),
        "--indirect",
    ]
    link = _run_nix(cmd, source, settings.resolver_timeout_seconds)
    try:
        step_id = os.readlink(link)
    except OSError as exc:
        raise ResolutionError(source, f"cannot read GC root link {link}: {exc}") from exc
    if not step_id.endswith(_STEP_SUFFIX):
        raise ResolutionError(source, f"nix-instantiate did not produce a step file: {step_id}")
    return step_id


def _resolve_flake(ref: FlakeRefInput, source: str, settings: Settings, gcroot_dir: Path) -> StepId:
    metadata_raw = _run_nix(
        [settings.nix_bin, *_EXPERIMENTAL_FEATURES, "flake", "metadata", "--json", ref.flake],
        source,
        settings.resolver_timeout_seconds,
    )
    try:
        metadata = json.loads(metadata_raw)
        store_path = metadata["path"]
        nar_hash = metadata["locked"]["narHash"]
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        raise ResolutionError(source, f"unexpected flake metadata: {exc}") from exc

    # Evaluate the locked store path, never the mutable flake reference.
    expression = f'(builtins.getFlake "path:{store_path}?narHash={nar_hash}").{ref.attribute}'
    return _instantiate(["--expr", expression], source, settings, gcroot_dir)


def _resolve_deriver(path: str, source: str, settings: Settings) -> StepId:
    deriver = _run_nix(
        [settings.nix_store_bin, "--query", "--deriver", path],
        source,
        settings.resolver_timeout_seconds,
    )
    if not deriver or deriver == _UNKNOWN_DERIVER:
        raise ResolutionError(source, "store path has no known deriver")
    return deriver


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def resolve_input(text: str, settings: Settings, gcroot_dir: Path | None = None) -> StepId:
    """Resolve *text* to the identifier of its root step.

    Parameters
    ----------
    text:
        Step file, ``.nix`` file, flake reference or realised store path.
    settings:
        Supplies the nix executable names and the subprocess timeout.
    gcroot_dir:
        Directory for temporary GC roots created during instantiation.  The
        caller keeps it alive for as long as the returned step is in use.
        A private temporary directory is used when omitted.

    Raises
    ------
    ResolutionError
        If the input cannot be classified or the nix tools fail.
    """
    resolved = classify_input(text)
    logger.info("Resolving %s as %s", text, type(resolved).__name__, extra={"source": text})

    if isinstance(resolved, StepFileInput):
        return resolved.path
    if isinstance(resolved, RealizedPathInput):
        return _resolve_deriver(resolved.path, text, settings)

    if gcroot_dir is None:
        with tempfile.TemporaryDirectory(prefix="stepdiff-") as tmp:
            return _resolve_instantiated(resolved, text, settings, Path(tmp))
    return _resolve_instantiated(resolved, text, settings, gcroot_dir)


def _resolve_instantiated(
    resolved: ExpressionFileInput | FlakeRefInput,
    source: str,
    settings: Settings,
    gcroot_dir: Path,
) -> StepId:
    if isinstance(resolved, FlakeRefInput):
        return _resolve_flake(resolved, source, settings, gcroot_dir)
    return _instantiate([resolved.path], source, settings, gcroot_dir)
