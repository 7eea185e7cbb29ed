"""Byte loaders backing the step store.

A loader turns a :data:`StepId` into the raw bytes of the file it names.
It knows nothing about parsing; the :class:`~step_engine.store.StepStore`
layers parsing and memoisation on top.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from step_engine.exceptions import StepIOError, StepNotFoundError
from step_engine.models.step import StepId

logger = logging.getLogger(__name__)


@runtime_checkable
class StepLoader(Protocol):
    """Source of raw step (and source-file) bytes."""

    def load_bytes(self, step_id: StepId) -> bytes:
        """Return the contents of *step_id*.

        Raises
        ------
        StepNotFoundError
            If nothing exists under *step_id*.
        StepIOError
            If it exists but cannot be read.
        """
        ...


class FileSystemLoader:
    """Read step identifiers as filesystem paths.

    Parameters
    ----------
    root:
        Optional directory that absolute identifiers are re-rooted under,
        e.g. a copied store used for offline comparison.  ``None`` reads
        identifiers as-is.
    """

    def __init__(self, root: Path | None = None) -> None:
        self._root = root

    def _path_for(self, step_id: StepId) -> Path:
        if self._root is None:
            return Path(step_id)
        return self._root / step_id.lstrip("/")

    def load_bytes(self, step_id: StepId) -> bytes:
        path = self._path_for(step_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise StepNotFoundError(step_id) from None
        except IsADirectoryError:
            raise StepIOError(step_id, "is a directory") from None
        except OSError as exc:
            raise StepIOError(step_id, exc.strerror or str(exc)) from exc


class MemoryLoader:
    """Serve step bytes from an in-memory mapping."""

    def __init__(self, entries: Mapping[StepId, bytes | str] | None = None) -> None:
        self._entries: dict[StepId, bytes] = {}
        for step_id, content in (entries or {}).items():
            self.add(step_id, content)

    def add(self, step_id: StepId, content: bytes | str) -> None:
        self._entries[step_id] = content.encode("utf-8") if isinstance(content, str) else content

    def load_bytes(self, step_id: StepId) -> bytes:
        try:
            return self._entries[step_id]
        except KeyError:
            raise StepNotFoundError(step_id) from None
