"""Timing instrumentation for the parser, store and differ hot paths.

``@profile_operation(name)`` wraps a function with ``perf_counter_ns``
timing, logs each call at DEBUG level and records the duration in the
process-wide :class:`ProfileCollector`.  The CLI prints the aggregated
statistics when invoked with ``--profile``.

Usage::

    from step_engine.telemetry.profiling import profile_operation

    @profile_operation("parser.parse_step")
    def parse_step(data):
        ...
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    operation: str
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "count": self.count,
            "total_ms": round(self.total_ms, 3),
            "mean_ms": round(self.mean_ms, 3),
            "max_ms": round(self.max_ms, 3),
        }


class ProfileCollector:
    """Accumulates per-operation timings for the current process."""

    _instance: ProfileCollector | None = None

    def __init__(self) -> None:
        self._stats: dict[str, OperationStats] = {}

    @classmethod
    def get_instance(cls) -> ProfileCollector:
        """Return the module-level singleton, creating it if needed."""
        if cls._instance is None:
            cls._instance = ProfileCollector()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (for testing)."""
        cls._instance = None

    def record(self, operation: str, duration_ms: float) -> None:
        stats = self._stats.get(operation)
        if stats is None:
            stats = self._stats[operation] = OperationStats(operation=operation)
        stats.count += 1
        stats.total_ms += duration_ms
        stats.max_ms = max(stats.max_ms, duration_ms)

    def get_stats(self, operation: str) -> dict[str, Any] | None:
        stats = self._stats.get(operation)
        return stats.to_dict() if stats is not None else None

    def get_all_stats(self) -> list[dict[str, Any]]:
        """Return stats for all tracked operations, sorted by name."""
        return [self._stats[name].to_dict() for name in sorted(self._stats)]


def profile_operation(name: str) -> Callable[[F], F]:
    """Decorator recording the wall-clock duration of each call under *name*.

    Durations are recorded even when the wrapped function raises.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_ns = time.perf_counter_ns()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
                ProfileCollector.get_instance().record(name, duration_ms)
                logger.debug("PROFILE %s: %.3f ms", name, duration_ms)

        return wrapper  # type: ignore[return-value]

    return decorator
