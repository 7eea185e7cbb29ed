"""Strict recursive-descent parser for the ``Derive(...)`` step format.

A step description is a single ATerm constructor with exactly seven
positional fields::

    Derive(
        [("out","/nix/store/...-hello","","")],          # outputs
        [("/nix/store/...-bash.drv",["out"])],             # input steps
        ["/nix/store/...-builder.sh"],                     # input sources
        "x86_64-linux",                                    # platform
        "/nix/store/...-bash/bin/bash",                    # builder
        ["-e","/nix/store/...-builder.sh"],                # args
        [("name","hello"),("out","/nix/store/...-hello")]  # env
    )

The grammar depth is fixed, so the parser is a handful of methods that each
validate arity and token type at their position.  Any deviation raises
:class:`~step_engine.exceptions.FormatError` with the offending position;
a partially-built :class:`Step` is never returned.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

from step_engine.exceptions import FormatError
from step_engine.models.step import OutputSpec, Step
from step_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)

CONSTRUCTOR = "Derive"

# Escapes with a special meaning inside strings; any other escaped
# character stands for itself.
_UNESCAPES: dict[str, str] = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "\\": "\\",
    '"': '"',
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


@profile_operation("parser.parse_step")
def parse_step(data: bytes | str) -> Step:
    """Parse one step description.

    Parameters
    ----------
    data:
        Raw bytes (decoded as strict UTF-8) or an already-decoded string.

    Returns
    -------
    Step
        The fully-parsed, immutable step.

    Raises
    ------
    FormatError
        If *data* is not valid UTF-8 or not a well-formed step description.
    """
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            prefix = data[: exc.start].decode("utf-8", errors="replace")
            raise _error_at(prefix, len(prefix), f"Invalid UTF-8 byte at offset {exc.start}") from None
    else:
        text = data

    return _StepParser(text).parse()


def parse_step_file(path: Path) -> Step:
    """Read *path* and parse its contents as a step description."""
    return parse_step(path.read_bytes())


# ---------------------------------------------------------------------------
# Internal parser
# ---------------------------------------------------------------------------


def _error_at(text: str, offset: int, message: str) -> FormatError:
    line = text.count("\n", 0, offset) + 1
    line_start = text.rfind("\n", 0, offset) + 1
    return FormatError(message, offset=offset, line=line, column=offset - line_start + 1)


class _StepParser:
    """Cursor over a decoded step description."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0

    # -- entry point --------------------------------------------------------

    def parse(self) -> Step:
        self._skip_whitespace()
        if not self._text.startswith(CONSTRUCTOR + "(", self._pos):
            found = self._text[self._pos : self._pos + len(CONSTRUCTOR) + 1] or "end of input"
            raise self._error(f"Expected '{CONSTRUCTOR}(' but found {found!r}")
        self._pos += len(CONSTRUCTOR) + 1

        outputs = self._parse_outputs()
        self._expect(",")
        input_steps = self._parse_input_steps()
        self._expect(",")
        input_sources = self._parse_string_list()
        self._expect(",")
        platform = self._parse_string()
        self._expect(",")
        builder = self._parse_string()
        self._expect(",")
        args = self._parse_string_list()
        self._expect(",")
        env = self._parse_env()
        self._expect(")")

        self._skip_whitespace()
        if self._pos != len(self._text):
            raise self._error("Unexpected trailing content after step description")

        return Step(
            outputs=outputs,
            input_steps=input_steps,
            input_sources=input_sources,
            platform=platform,
            builder=builder,
            args=args,
            env=env,
        )

    # -- fields -------------------------------------------------------------

    def _parse_outputs(self) -> dict[str, OutputSpec]:
        outputs: dict[str, OutputSpec] = {}
        start = self._pos
        for _ in self._list_items():
            self._expect("(")
            name = self._parse_string()
            self._expect(",")
            path = self._parse_string()
            self._expect(",")
            hash_algorithm = self._parse_string()
            self._expect(",")
            hash_value = self._parse_string()
            self._expect(")")
            if name in outputs:
                raise self._error(f"Duplicate output name {name!r}")
            outputs[name] = OutputSpec(
                path=path,
                hash_algorithm=hash_algorithm or None,
                hash=hash_value or None,
            )
        if not outputs:
            raise _error_at(self._text, start, "Step declares no outputs")
        return outputs

    def _parse_input_steps(self) -> dict[str, list[str]]:
        inputs: dict[str, list[str]] = {}
        for _ in self._list_items():
            self._expect("(")
            step_id = self._parse_string()
            self._expect(",")
            output_names = self._parse_string_list()
            self._expect(")")
            if step_id in inputs:
                raise self._error(f"Duplicate input step {step_id!r}")
            inputs[step_id] = output_names
        return inputs

    def _parse_env(self) -> dict[str, str]:
        env: dict[str, str] = {}
        for _ in self._list_items():
            self._expect("(")
            key = self._parse_string()
            self._expect(",")
            value = self._parse_string()
            self._expect(")")
            if key in env:
                raise self._error(f"Duplicate environment variable {key!r}")
            env[key] = value
        return env

    def _parse_string_list(self) -> list[str]:
        return [self._parse_string() for _ in self._list_items()]

    # -- tokens -------------------------------------------------------------

    def _list_items(self) -> Iterator[None]:
        """Yield once per element of a bracketed, comma-separated list.

        The caller consumes the element on each iteration; separators and
        the closing bracket are handled here.
        """
        self._expect("[")
        self._skip_whitespace()
        if self._peek() == "]":
            self._pos += 1
            return
        while True:
            yield
            self._skip_whitespace()
            char = self._peek()
            if char == ",":
                self._pos += 1
                continue
            if char == "]":
                self._pos += 1
                return
            if char is None:
                raise self._error("Unterminated list")
            raise self._error(f"Expected ',' or ']' but found {char!r}")

    def _parse_string(self) -> str:
        self._expect('"')
        text = self._text
        start = self._pos - 1
        chunks: list[str] = []
        chunk_start = self._pos
        pos = self._pos
        end = len(text)
        while pos < end:
            char = text[pos]
            if char == '"':
                chunks.append(text[chunk_start:pos])
                self._pos = pos + 1
                return "".join(chunks)
            if char == "\\":
                chunks.append(text[chunk_start:pos])
                if pos + 1 >= end:
                    break
                escaped = text[pos + 1]
                chunks.append(_UNESCAPES.get(escaped, escaped))
                pos += 2
                chunk_start = pos
                continue
            pos += 1
        raise _error_at(text, start, "Unterminated string")

    def _expect(self, token: str) -> None:
        self._skip_whitespace()
        char = self._peek()
        if char == token:
            self._pos += 1
            return
        if char is None:
            raise self._error(f"Expected {token!r} but reached end of input")
        raise self._error(f"Expected {token!r} but found {char!r}")

    def _peek(self) -> str | None:
        if self._pos >= len(self._text):
            return None
        return self._text[self._pos]

    def _skip_whitespace(self) -> None:
        text = self._text
        while self._pos < len(text) and text[self._pos].isspace():
            self._pos += 1

    def _error(self, message: str) -> FormatError:
        return _error_at(self._text, self._pos, message)
