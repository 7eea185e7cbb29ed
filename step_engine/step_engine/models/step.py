"""Build step record produced by the step parser.

A :class:`Step` is an immutable, fully-parsed build description: the
declared outputs, the input steps (and which of their outputs are
consumed), plain source inputs, the target platform, the builder program
with its arguments, and the builder environment.  Steps are named by
:data:`StepId` values, which are content-addressed store paths such as
``/nix/store/<hash>-hello-2.12.drv``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

StepId = str

_STEP_SUFFIX = ".drv"


class OutputSpec(BaseModel):
    """One declared output of a step."""

    model_config = ConfigDict(frozen=True)

    path: StepId = Field(
        ...,
        description="Store path the output is realised at.  Never compared when diffing.",
    )
    hash_algorithm: str | None = Field(
        default=None,
        description="Hash algorithm for fixed-output steps (e.g. 'sha256'), if any.",
    )
    hash: str | None = Field(
        default=None,
        description="Expected output hash for fixed-output steps, if any.",
    )


class Step(BaseModel):
    """A parsed build step.

    Mapping fields keep the insertion order of the source so that
    re-rendering reproduces it; comparison is always by key.
    """

    model_config = ConfigDict(frozen=True)

    outputs: dict[str, OutputSpec] = Field(
        ...,
        description="Output name -> declared output.  Never empty.",
    )
    input_steps: dict[StepId, list[str]] = Field(
        default_factory=dict,
        description="Referenced step -> names of the outputs consumed from it.",
    )
    input_sources: list[StepId] = Field(
        default_factory=list,
        description="Plain file inputs; leaves of the step graph.",
    )
    platform: str = Field(..., description="Target system, e.g. 'x86_64-linux'.")
    builder: str = Field(..., description="Program executed to perform the build.")
    args: list[str] = Field(default_factory=list, description="Builder arguments, in order.")
    env: dict[str, str] = Field(default_factory=dict, description="Builder environment.")


def logical_name(step_id: StepId) -> str:
    """Return the human-meaningful name of *step_id* with its hash stripped.

    ``/nix/store/0c7a...-hello-2.12.drv`` becomes ``hello-2.12``.  The hash
    qualifier is everything up to and including the first ``-`` of the final
    path component.  A final component without a ``-`` carries no hash and
    is used whole, so the directory never takes part in the name.
    """
    filename = step_id.rsplit("/", 1)[-1]
    _, dash, name = filename.partition("-")
    if not dash:
        name = filename
    if name.endswith(_STEP_SUFFIX):
        name = name[: -len(_STEP_SUFFIX)]
    return name
