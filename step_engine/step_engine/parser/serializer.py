"""Render a :class:`Step` back into canonical ``Derive(...)`` text.

Escaping mirrors the parser exactly: ``"``, ``\\``, newline, carriage return
and tab are escaped, everything else is written verbatim.  Absent output
hashes are written as empty strings.  For canonical input (no insignificant
whitespace) ``serialize_step(parse_step(text)) == text``.
"""

from __future__ import annotations

from step_engine.models.step import Step
from step_engine.parser.step_parser import CONSTRUCTOR

_ESCAPES = str.maketrans(
    {
        "\\": "\\\\",
        '"': '\\"',
        "\n": "\\n",
        "\r": "\\r",
        "\t": "\\t",
    }
)


def quote(value: str) -> str:
    """Return *value* as a quoted, escaped string literal."""
    return '"' + value.translate(_ESCAPES) + '"'


def _string_list(values: list[str]) -> str:
    return "[" + ",".join(quote(v) for v in values) + "]"


def serialize_step(step: Step) -> str:
    """Serialize *step* to its canonical textual form."""
    outputs = ",".join(
        "("
        + ",".join(
            (
                quote(name),
                quote(spec.path),
                quote(spec.hash_algorithm or ""),
                quote(spec.hash or ""),
            )
        )
        + ")"
        for name, spec in step.outputs.items()
    )
    input_steps = ",".join(
        "(" + quote(step_id) + "," + _string_list(names) + ")"
        for step_id, names in step.input_steps.items()
    )
    env = ",".join("(" + quote(key) + "," + quote(value) + ")" for key, value in step.env.items())

    fields = [
        "[" + outputs + "]",
        "[" + input_steps + "]",
        _string_list(step.input_sources),
        quote(step.platform),
        quote(step.builder),
        _string_list(step.args),
        "[" + env + "]",
    ]
    return f"{CONSTRUCTOR}(" + ",".join(fields) + ")"
