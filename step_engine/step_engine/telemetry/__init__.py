"""Profiling and structured log formatting."""

from __future__ import annotations

from step_engine.telemetry.json_formatter import JSONFormatter
from step_engine.telemetry.profiling import OperationStats, ProfileCollector, profile_operation

__all__ = [
    "JSONFormatter",
    "OperationStats",
    "ProfileCollector",
    "profile_operation",
]
