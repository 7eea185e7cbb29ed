"""Step loading and memoisation."""

from step_engine.store.loaders import FileSystemLoader, MemoryLoader, StepLoader
from step_engine.store.step_store import StepStore

__all__ = [
    "FileSystemLoader",
    "MemoryLoader",
    "StepLoader",
    "StepStore",
]
