"""Lazy, memoising step store.

The same step typically appears many times in a graph (every package
depends on the same compiler and shell), so each distinct identifier is
loaded and parsed at most once per store.  Entries are inserted once and
never evicted or replaced.
"""

from __future__ import annotations

import logging

from step_engine.exceptions import FormatError, StepIOError, StepLoadError, StepNotFoundError
from step_engine.models.step import Step, StepId
from step_engine.parser.step_parser import parse_step
from step_engine.store.loaders import StepLoader
from step_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)


class StepStore:
    """Map step identifiers to parsed :class:`Step` records on demand."""

    def __init__(self, loader: StepLoader) -> None:
        self._loader = loader
        self._cache: dict[StepId, Step] = {}

    @property
    def loader(self) -> StepLoader:
        return self._loader

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, step_id: StepId) -> Step:
        """Return the parsed step for *step_id*, loading it on first access.

        Raises
        ------
        StepLoadError
            If the bytes cannot be read or do not parse.  The underlying
            error is available as ``cause``.
        """
        step = self._cache.get(step_id)
        if step is None:
            step = self._load(step_id)
            self._cache[step_id] = step
        return step

    def read_bytes(self, step_id: StepId) -> bytes:
        """Return raw bytes for *step_id* without parsing or caching.

        Used for plain source inputs, which are not step descriptions.
        """
        return self._loader.load_bytes(step_id)

    @profile_operation("store.load")
    def _load(self, step_id: StepId) -> Step:
        try:
            data = self._loader.load_bytes(step_id)
            step = parse_step(data)
        except (StepNotFoundError, StepIOError, FormatError) as exc:
            logger.debug("Failed to load step %s: %s", step_id, exc, extra={"step_id": step_id})
            raise StepLoadError(step_id, exc) from exc
        logger.debug("Loaded step %s", step_id, extra={"step_id": step_id})
        return step
