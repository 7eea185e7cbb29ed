"""Shared fixtures for CLI tests.

Step files are written into ``tmp_path`` and passed to the CLI by absolute
path, so every command runs against a real filesystem store without
requiring nix to be installed.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from pathlib import Path

import pytest

from step_engine.models.step import OutputSpec, Step
from step_engine.parser.serializer import serialize_step
from step_engine.telemetry.profiling import ProfileCollector

import stepdiff_cli.app as cli_app


class StepFiles:
    """Write step descriptions and sources under a temporary directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, name: str, variant: str, suffix: str) -> Path:
        digest = hashlib.sha256(f"{name}:{variant}".encode()).hexdigest()[:32]
        return self.root / f"{digest}-{name}{suffix}"

    def source(self, name: str, content: bytes | str, variant: str = "a") -> str:
        path = self._path(name, variant, "")
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)
        return str(path)

    def step(
        self,
        name: str,
        variant: str = "a",
        *,
        inputs: Mapping[str, list[str]] | None = None,
        sources: list[str] | None = None,
        builder: str = "/bin/sh",
        env: Mapping[str, str] | None = None,
    ) -> str:
        path = self._path(name, variant, ".drv")
        step = Step(
            outputs={"out": OutputSpec(path=str(self._path(name, variant, "")))},
            input_steps=dict(inputs or {}),
            input_sources=list(sources or []),
            platform="x86_64-linux",
            builder=builder,
            args=["-e", "builder.sh"],
            env=dict(env) if env is not None else {"name": name},
        )
        path.write_text(serialize_step(step), encoding="utf-8")
        return str(path)


@pytest.fixture()
def step_files(tmp_path: Path) -> StepFiles:
    return StepFiles(tmp_path)


@pytest.fixture(autouse=True)
def _isolate_cli_state(monkeypatch: pytest.MonkeyPatch):
    """Reset module-level CLI state, profiling and root logging per test."""
    for name in ("STEPDIFF_GRANULARITY", "STEPDIFF_CONTEXT_LINES", "STEPDIFF_COLOR_MODE", "NO_COLOR"):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    monkeypatch.setattr(cli_app, "_settings", None)
    ProfileCollector.reset()
    yield
    ProfileCollector.reset()
    root.handlers[:] = handlers
    root.setLevel(level)
