"""Step description parsing and serialization."""

from step_engine.exceptions import FormatError
from step_engine.parser.serializer import quote, serialize_step
from step_engine.parser.step_parser import CONSTRUCTOR, parse_step, parse_step_file

__all__ = [
    "CONSTRUCTOR",
    "FormatError",
    "parse_step",
    "parse_step_file",
    "quote",
    "serialize_step",
]
