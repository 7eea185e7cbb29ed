"""Resolution of user inputs (step files, expressions, flakes, store paths) to root steps."""

from step_engine.resolver.resolver import (
    ExpressionFileInput,
    FlakeRefInput,
    RealizedPathInput,
    ResolverInput,
    StepFileInput,
    classify_input,
    resolve_input,
)

__all__ = [
    "ExpressionFileInput",
    "FlakeRefInput",
    "RealizedPathInput",
    "ResolverInput",
    "StepFileInput",
    "classify_input",
    "resolve_input",
]
