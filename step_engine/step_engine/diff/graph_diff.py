"""Memoised comparison of two step graphs.

Every step is named by a hash of its full contents, so a one-line change in
a leaf renames every step above it.  Comparing identifiers is therefore
useless; instead the differ walks both graphs from their roots, aligns
input steps by logical name, and descends into each aligned pair.  A pair
whose own attributes and whose aligned inputs all compare equal is reported
as IDENTICAL even though its identifiers differ.  That pruning rule is what
removes hash-propagation noise from the report.

Results are memoised per unordered pair of identifiers in a
:class:`DiffCache` shared by the whole run, which bounds the work to the
number of distinct pairs encountered in the two graphs.  A failed load
removes the pending markers of the pairs it interrupted.

Usage::

    store = StepStore(FileSystemLoader())
    result = diff_steps(old_root, new_root, store, granularity=Granularity.WORD)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from step_engine.config import Granularity
from step_engine.diff.matching import AlignedPair, align_by_logical_name
from step_engine.diff.text_diff import diff_sequences, diff_text
from step_engine.exceptions import StepIOError, StepNotFoundError
from step_engine.models.diff import (
    ChangedInput,
    ChangeType,
    DiffStatus,
    EnvVarDiff,
    InputRef,
    OutputDiff,
    SourceDiff,
    SourcesDiff,
    StepDiff,
    StringDelta,
    TextDiff,
)
from step_engine.models.step import OutputSpec, Step, StepId
from step_engine.store.step_store import StepStore
from step_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Memo table
# ---------------------------------------------------------------------------


class _Pending:
    """Marker for a pair whose comparison is in progress."""

    def __repr__(self) -> str:
        return "<pending>"


_PENDING = _Pending()


class DiffCache:
    """Per-run memo table keyed by the unordered pair of identifiers.

    Each completed entry remembers the orientation it was computed in, so a
    lookup in the opposite orientation returns the inverted diff.  Pairs
    re-entered while still pending are resolved provisionally as IDENTICAL
    and listed in :attr:`provisional_pairs`.
    """

    def __init__(self) -> None:
        self._entries: dict[frozenset[StepId], tuple[StepId, StepDiff] | _Pending] = {}
        self.provisional_pairs: list[tuple[StepId, StepId]] = []

    @staticmethod
    def _key(old_id: StepId, new_id: StepId) -> frozenset[StepId]:
        return frozenset((old_id, new_id))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, pair: object) -> bool:
        if not isinstance(pair, tuple) or len(pair) != 2:
            return False
        return self._key(*pair) in self._entries

    def is_pending(self, old_id: StepId, new_id: StepId) -> bool:
        return self._entries.get(self._key(old_id, new_id)) is _PENDING

    def get(self, old_id: StepId, new_id: StepId) -> StepDiff | None:
        """Return the completed diff for the pair, oriented old -> new."""
        entry = self._entries.get(self._key(old_id, new_id))
        if entry is None or isinstance(entry, _Pending):
            return None
        computed_old, diff = entry
        return diff if computed_old == old_id else diff.inverted()

    def mark_pending(self, old_id: StepId, new_id: StepId) -> None:
        self._entries[self._key(old_id, new_id)] = _PENDING

    def record_provisional(self, old_id: StepId, new_id: StepId) -> None:
        self.provisional_pairs.append((old_id, new_id))

    def put(self, old_id: StepId, new_id: StepId, diff: StepDiff) -> None:
        self._entries[self._key(old_id, new_id)] = (old_id, diff)

    def discard(self, old_id: StepId, new_id: StepId) -> None:
        """Forget the pair if its comparison is still pending."""
        key = self._key(old_id, new_id)
        if self._entries.get(key) is _PENDING:
            del self._entries[key]


# ---------------------------------------------------------------------------
# Graph differ
# ---------------------------------------------------------------------------


@dataclass
class _Frame:
    """A pair being compared, with the aligned inputs still to visit."""

    candidate: StepDiff
    old: Step
    new: Step
    pairs: list[AlignedPair]
    index: int = 0

    @property
    def current(self) -> AlignedPair | None:
        return self.pairs[self.index] if self.index < len(self.pairs) else None


class GraphDiffer:
    """Compare step graphs pulled lazily from a :class:`StepStore`.

    The walk is depth-first over aligned input pairs and keeps its own
    stack, so graph depth is not limited by the interpreter's recursion
    limit.

    Parameters
    ----------
    store:
        Source of parsed steps (and of raw source-file bytes).
    granularity:
        Unit used for environment values and source contents.  Builder
        arguments are always diffed one argument per unit.
    read_sources:
        When false, aligned source inputs with different identifiers are
        not read and their contents are not compared.
    """

    def __init__(
        self,
        store: StepStore,
        granularity: Granularity = Granularity.LINE,
        *,
        read_sources: bool = True,
    ) -> None:
        self._store = store
        self._granularity = granularity
        self._read_sources = read_sources

    def diff(self, old_id: StepId, new_id: StepId, cache: DiffCache | None = None) -> StepDiff:
        """Return the difference between the graphs rooted at the two ids.

        Raises
        ------
        StepLoadError
            If any step reached on either side cannot be loaded or parsed.
            Pairs left unfinished by the failure are removed from *cache*.
        """
        if cache is None:
            cache = DiffCache()
        known = self._resolve_known(old_id, new_id, cache)
        if known is not None:
            return known

        stack = [self._open(old_id, new_id, cache)]
        try:
            while True:
                frame = stack[-1]
                pair = frame.current
                if pair is not None:
                    nested = self._resolve_known(pair.old_id, pair.new_id, cache)
                    if nested is None:
                        stack.append(self._open(pair.old_id, pair.new_id, cache))
                        continue
                    _record_input(frame, pair, nested)
                    frame.index += 1
                    continue

                stack.pop()
                result = self._close(frame, cache)
                if not stack:
                    return result
                parent = stack[-1]
                _record_input(parent, parent.pairs[parent.index], result)
                parent.index += 1
        finally:
            for frame in stack:
                cache.discard(frame.candidate.old_id, frame.candidate.new_id)

    # -- traversal ----------------------------------------------------------

    def _resolve_known(self, old_id: StepId, new_id: StepId, cache: DiffCache) -> StepDiff | None:
        """Answer the pair without loading anything, or return ``None``."""
        if old_id == new_id:
            return StepDiff.unchanged(old_id, new_id)

        if cache.is_pending(old_id, new_id):
            logger.debug(
                "Pair %s / %s re-entered while pending; treating as identical",
                old_id,
                new_id,
                extra={"old_id": old_id, "new_id": new_id},
            )
            cache.record_provisional(old_id, new_id)
            return StepDiff.unchanged(old_id, new_id)

        return cache.get(old_id, new_id)

    def _open(self, old_id: StepId, new_id: StepId, cache: DiffCache) -> _Frame:
        old = self._store.get(old_id)
        new = self._store.get(new_id)
        frame = self._compare_fields(old_id, new_id, old, new)
        cache.mark_pending(old_id, new_id)
        return frame

    @profile_operation("diff.pair")
    def _compare_fields(self, old_id: StepId, new_id: StepId, old: Step, new: Step) -> _Frame:
        alignment = align_by_logical_name(old.input_steps, new.input_steps)
        candidate = StepDiff(
            status=DiffStatus.CHANGED,
            old_id=old_id,
            new_id=new_id,
            platform_diff=_string_delta(old.platform, new.platform),
            builder_diff=_string_delta(old.builder, new.builder),
            args_diff=_args_diff(old.args, new.args),
            env_diff=self._env_diff(old.env, new.env) or None,
            output_diff=_output_diff(old.outputs, new.outputs) or None,
            sources_diff=self._sources_diff(old.input_sources, new.input_sources),
            removed_inputs=[InputRef(name=e.name, step_id=e.step_id) for e in alignment.removed],
            added_inputs=[InputRef(name=e.name, step_id=e.step_id) for e in alignment.added],
        )
        return _Frame(candidate=candidate, old=old, new=new, pairs=alignment.pairs)

    def _close(self, frame: _Frame, cache: DiffCache) -> StepDiff:
        candidate = frame.candidate
        old_id, new_id = candidate.old_id, candidate.new_id
        if candidate.has_field_changes:
            logger.debug(
                "Steps %s and %s differ",
                old_id,
                new_id,
                extra={"old_id": old_id, "new_id": new_id},
            )
            result = candidate
        else:
            result = StepDiff.unchanged(old_id, new_id)
        cache.put(old_id, new_id, result)
        return result

    # -- field comparisons --------------------------------------------------

    def _env_diff(self, old: dict[str, str], new: dict[str, str]) -> list[EnvVarDiff]:
        entries: list[EnvVarDiff] = []
        for key in sorted(old.keys() | new.keys()):
            if key not in new:
                entries.append(EnvVarDiff(key=key, change=ChangeType.REMOVED, old_value=old[key]))
            elif key not in old:
                entries.append(EnvVarDiff(key=key, change=ChangeType.ADDED, new_value=new[key]))
            elif old[key] != new[key]:
                entries.append(
                    EnvVarDiff(
                        key=key,
                        change=ChangeType.MODIFIED,
                        old_value=old[key],
                        new_value=new[key],
                        value_diff=diff_text(old[key], new[key], self._granularity),
                    )
                )
        return entries

    def _sources_diff(self, old: list[StepId], new: list[StepId]) -> SourcesDiff | None:
        alignment = align_by_logical_name(old, new)
        result = SourcesDiff(
            removed=[InputRef(name=e.name, step_id=e.step_id) for e in alignment.removed],
            added=[InputRef(name=e.name, step_id=e.step_id) for e in alignment.added],
        )
        if self._read_sources:
            for pair in alignment.pairs:
                if pair.old_id == pair.new_id:
                    continue
                content_diff = self._source_content_diff(pair.old_id, pair.new_id)
                if content_diff is not None and not content_diff.is_identical:
                    result.changed.append(
                        SourceDiff(
                            name=pair.name,
                            old_id=pair.old_id,
                            new_id=pair.new_id,
                            content_diff=content_diff,
                        )
                    )
        return None if result.is_empty else result

    def _source_content_diff(self, old_id: StepId, new_id: StepId) -> TextDiff | None:
        try:
            old_bytes = self._store.read_bytes(old_id)
            new_bytes = self._store.read_bytes(new_id)
        except (StepNotFoundError, StepIOError) as exc:
            logger.debug("Skipping source comparison: %s", exc, extra={"source": old_id})
            return None

        if old_bytes == new_bytes:
            return None
        old_text = _decode_text(old_bytes)
        new_text = _decode_text(new_bytes)
        if old_text is None or new_text is None:
            return TextDiff(granularity=self._granularity, binary=True)
        return diff_text(old_text, new_text, self._granularity)


def _record_input(frame: _Frame, pair: AlignedPair, nested: StepDiff) -> None:
    """Add *pair* to the frame's changed inputs unless nothing about it changed."""
    old_outputs = set(frame.old.input_steps[pair.old_id])
    new_outputs = set(frame.new.input_steps[pair.new_id])
    if nested.identical and old_outputs == new_outputs:
        return
    frame.candidate.changed_inputs.append(
        ChangedInput(
            name=pair.name,
            old_id=pair.old_id,
            new_id=pair.new_id,
            diff=nested,
            added_outputs=sorted(new_outputs - old_outputs),
            removed_outputs=sorted(old_outputs - new_outputs),
        )
    )


def _decode_text(data: bytes) -> str | None:
    """Return *data* as text, or ``None`` when it looks binary."""
    if b"\x00" in data:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _string_delta(old: str | None, new: str | None) -> StringDelta | None:
    return None if old == new else StringDelta(old=old, new=new)


def _args_diff(old: list[str], new: list[str]) -> TextDiff | None:
    if old == new:
        return None
    return diff_sequences(old, new, Granularity.LINE)


def _output_diff(old: dict[str, OutputSpec], new: dict[str, OutputSpec]) -> list[OutputDiff]:
    entries: list[OutputDiff] = []
    for name in sorted(old.keys() | new.keys()):
        if name not in new:
            entries.append(OutputDiff(name=name, change=ChangeType.REMOVED, old=old[name]))
            continue
        if name not in old:
            entries.append(OutputDiff(name=name, change=ChangeType.ADDED, new=new[name]))
            continue
        before, after = old[name], new[name]
        algo = _string_delta(before.hash_algorithm, after.hash_algorithm)
        digest = _string_delta(before.hash, after.hash)
        if algo is not None or digest is not None:
            entries.append(
                OutputDiff(
                    name=name,
                    change=ChangeType.MODIFIED,
                    old=before,
                    new=after,
                    hash_algorithm=algo,
                    hash=digest,
                )
            )
    return entries


@profile_operation("diff.steps")
def diff_steps(
    old_id: StepId,
    new_id: StepId,
    store: StepStore,
    cache: DiffCache | None = None,
    *,
    granularity: Granularity = Granularity.LINE,
    read_sources: bool = True,
) -> StepDiff:
    """Compare the step graphs rooted at *old_id* and *new_id*.

    Parameters
    ----------
    old_id, new_id:
        Root step identifiers.
    store:
        Store the steps are pulled from.
    cache:
        Memo table to share across calls; a fresh one is used when omitted.
    granularity:
        Unit for environment-value and source-content diffs.
    read_sources:
        Whether to compare the contents of aligned source inputs.

    Returns
    -------
    StepDiff
        IDENTICAL, or CHANGED with the populated difference fields.
    """
    differ = GraphDiffer(store, granularity, read_sources=read_sources)
    return differ.diff(old_id, new_id, cache)
