"""Shared fixtures for step engine tests.

:class:`GraphBuilder` assembles small step graphs in memory.  Each added
step is serialised into a :class:`MemoryLoader` under a hash-qualified
identifier derived from its logical name and a *variant* tag, so two
variants of the same step get different identifiers but the same logical
name, which is exactly what hash propagation looks like on disk.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping

import pytest

from step_engine.models.step import OutputSpec, Step
from step_engine.parser.serializer import serialize_step
from step_engine.store import MemoryLoader, StepStore
from step_engine.telemetry.profiling import ProfileCollector


def fake_hash(seed: str) -> str:
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:32]


class GraphBuilder:
    """Build step graphs backed by a :class:`MemoryLoader`."""

    def __init__(self) -> None:
        self.loader = MemoryLoader()

    def step_id(self, name: str, variant: str = "a") -> str:
        """Return the identifier :meth:`add` assigns to *name* and *variant*."""
        return f"/nix/store/{fake_hash(f'{name}:{variant}')}-{name}.drv"

    def add(
        self,
        name: str,
        variant: str = "a",
        *,
        inputs: Mapping[str, list[str]] | Iterable[str] | None = None,
        sources: Iterable[str] | None = None,
        outputs: Mapping[str, OutputSpec] | None = None,
        platform: str = "x86_64-linux",
        builder: str = "/bin/sh",
        args: list[str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Serialise a step into the loader and return its identifier."""
        digest = fake_hash(f"{name}:{variant}")
        step_id = self.step_id(name, variant)
        if inputs is None:
            input_steps: dict[str, list[str]] = {}
        elif isinstance(inputs, Mapping):
            input_steps = {key: list(value) for key, value in inputs.items()}
        else:
            input_steps = {key: ["out"] for key in inputs}
        step = Step(
            outputs=dict(outputs) if outputs else {"out": OutputSpec(path=f"/nix/store/{digest}-{name}")},
            input_steps=input_steps,
            input_sources=list(sources or []),
            platform=platform,
            builder=builder,
            args=list(args) if args is not None else ["-e", "builder.sh"],
            env=dict(env) if env is not None else {"name": name},
        )
        self.loader.add(step_id, serialize_step(step))
        return step_id

    def add_source(self, name: str, content: bytes | str, variant: str = "a") -> str:
        """Store a plain source file and return its identifier."""
        source_id = f"/nix/store/{fake_hash(f'src:{name}:{variant}')}-{name}"
        self.loader.add(source_id, content)
        return source_id

    def store(self) -> StepStore:
        return StepStore(self.loader)


@pytest.fixture()
def graph() -> GraphBuilder:
    return GraphBuilder()


@pytest.fixture(autouse=True)
def _reset_profile_collector():
    """Ensure a fresh profiling singleton for each test."""
    ProfileCollector.reset()
    yield
    ProfileCollector.reset()


HELLO_STEP = (
    'Derive([("out","/nix/store/0c7a-hello-2.12","","")],'
    '[("/nix/store/9a1b-bash-5.2.drv",["out"]),("/nix/store/7f3e-stdenv.drv",["out","dev"])],'
    '["/nix/store/1d2c-builder.sh"],'
    '"x86_64-linux","/nix/store/4e5f-bash-5.2/bin/bash",'
    '["-e","/nix/store/1d2c-builder.sh"],'
    '[("builder","/nix/store/4e5f-bash-5.2/bin/bash"),("name","hello-2.12"),'
    '("out","/nix/store/0c7a-hello-2.12"),("system","x86_64-linux")])'
)


@pytest.fixture()
def hello_step_text() -> str:
    """A canonical step description with inputs, sources and environment."""
    return HELLO_STEP
