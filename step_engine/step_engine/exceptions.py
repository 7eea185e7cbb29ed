"""Exception taxonomy shared by the parser, store, differ and resolver.

Every error is terminal for the diff that raised it.  Nothing in the engine
retries or recovers locally; callers receive the first failure together
with enough context (step identifier, source position) to print a precise
diagnostic.
"""

from __future__ import annotations


class StepDiffError(Exception):
    """Base class for all step engine failures."""


class FormatError(StepDiffError):
    """Raised when bytes are not a well-formed step description.

    Attributes
    ----------
    offset:
        Zero-based character offset where parsing stopped.
    line, column:
        1-based position derived from *offset*.
    """

    def __init__(self, message: str, *, offset: int = 0, line: int = 1, column: int = 1) -> None:
        self.message = message
        self.offset = offset
        self.line = line
        self.column = column
        super().__init__(f"{message} (line {line}, column {column})")


class StepNotFoundError(StepDiffError):
    """Raised by a loader when no step exists under the requested identifier."""

    def __init__(self, step_id: str) -> None:
        self.step_id = step_id
        super().__init__(f"Step not found: {step_id}")


class StepIOError(StepDiffError):
    """Raised by a loader when a step exists but cannot be read."""

    def __init__(self, step_id: str, reason: str) -> None:
        self.step_id = step_id
        self.reason = reason
        super().__init__(f"Cannot read step {step_id}: {reason}")


class StepLoadError(StepDiffError):
    """Raised when a referenced step cannot be loaded or parsed.

    Wraps the underlying :class:`StepNotFoundError`, :class:`StepIOError`
    or :class:`FormatError` in ``cause`` and names the offending step.
    """

    def __init__(self, step_id: str, cause: StepDiffError) -> None:
        self.step_id = step_id
        self.cause = cause
        super().__init__(f"Failed to load step {step_id}: {cause}")


class ResolutionError(StepDiffError):
    """Raised when a user-supplied input cannot be resolved to a root step."""

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"Cannot resolve {source!r}: {message}")
