"""Size-tiered compaction scheduling.

The scheduler picks one of:

- at least ``min_compaction_sources`` L0 SSTables, compacted into a new sorted run;
- a series of at least ``min_compaction_sources`` sorted runs whose sizes are
  similar, where a run joins the series only if its size is at most
  ``include_size_threshold`` times the smallest size seen so far.

A compaction never holds more than ``max_compaction_sources`` sources. Candidates
that conflict with running compactions, or that would produce a run needing
another large compaction right away, are rejected.
"""

from __future__ import annotations

import struct
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from slatecore.manifest import CoreDbState

MAX_IN_FLIGHT_COMPACTIONS = 4


def _f32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", value))[0]


def _scaled(size: int, threshold: float) -> int:
    """``size * threshold`` computed in single precision and truncated."""
    return int(_f32(_f32(float(size)) * _f32(threshold)))


@dataclass(frozen=True)
class SourceId:
    """A compaction source: an L0 SSTable (by ULID) or a sorted run (by id)."""

    value: int
    is_sorted_run: bool

    @classmethod
    def sst(cls, ulid: int) -> SourceId:
        return cls(ulid, False)

    @classmethod
    def sorted_run(cls, id: int) -> SourceId:
        return cls(id, True)

    def unwrap_sorted_run(self) -> int:
        if not self.is_sorted_run:
            raise ValueError("compaction source is not a sorted run")
        return self.value


@dataclass
class Compaction:
    """Compaction of ``sources`` into the sorted run ``destination``."""

    sources: list[SourceId]
    destination: int


class CompactorState:
    """The database state seen by the compactor, with the compactions running on it."""

    def __init__(self, db_state: CoreDbState) -> None:
        self.db_state = db_state
        self._compactions: list[Compaction] = []

    def compactions(self) -> list[Compaction]:
        """The compactions currently running."""
        return list(self._compactions)

    def submit_compaction(self, compaction: Compaction) -> None:
        """Record a running compaction; raise ValueError if it uses a busy source."""
        busy = ConflictChecker(self._compactions)
        if not busy.check_compaction(compaction.sources, compaction.destination):
            raise ValueError("compaction uses a source that is already being compacted")
        self._compactions.append(compaction)


@dataclass
class SizeTieredCompactionSchedulerOptions:
    min_compaction_sources: int = 4
    max_compaction_sources: int = 8
    include_size_threshold: float = 4.0


@dataclass(frozen=True)
class _CompactionSource:
    source: SourceId
    size: int


class ConflictChecker:
    """Rejects compactions that use a source or destination already in use."""

    def __init__(self, compactions: Iterable[Compaction]) -> None:
        self._sources_used: set[SourceId] = set()
        for compaction in compactions:
            self.add_compaction(compaction)

    def check_compaction(self, sources: Iterable[SourceId], dst: int) -> bool:
        """True if none of ``sources`` nor the destination run is in use."""
        if any(source in self._sources_used for source in sources):
            return False
        return SourceId.sorted_run(dst) not in self._sources_used

    def add_compaction(self, compaction: Compaction) -> None:
        self._sources_used.update(compaction.sources)
        self._sources_used.add(SourceId.sorted_run(compaction.destination))


class _BackpressureChecker:
    """Rejects compactions whose output would join an already maximal compactable run."""

    def __init__(
        self,
        include_size_threshold: float,
        max_compaction_sources: int,
        srs: Sequence[_CompactionSource],
    ) -> None:
        self._include_size_threshold = include_size_threshold
        self._max_compaction_sources = max_compaction_sources
        self._longest_runs = {
            sr.source.unwrap_sorted_run(): _build_compactable_run(
                include_size_threshold, srs[start:], None
            )
            for start, sr in enumerate(srs)
        }

    def check_compaction(
        self, sources: Sequence[_CompactionSource], next_sr: _CompactionSource | None
    ) -> bool:
        if next_sr is None:
            return True
        estimated_size = sum(src.size for src in sources)
        if next_sr.size <= _scaled(estimated_size, self._include_size_threshold):
            run = self._longest_runs.get(next_sr.source.unwrap_sorted_run(), [])
            if len(run) >= self._max_compaction_sources:
                return False
        return True


class _CompactionChecker:
    def __init__(
        self, conflict_checker: ConflictChecker, backpressure_checker: _BackpressureChecker
    ) -> None:
        self.conflict_checker = conflict_checker
        self.backpressure_checker = backpressure_checker

    def check_compaction(
        self,
        sources: Sequence[_CompactionSource],
        dst: int,
        next_sr: _CompactionSource | None,
    ) -> bool:
        if not self.conflict_checker.check_compaction((s.source for s in sources), dst):
            return False
        return self.backpressure_checker.check_compaction(sources, next_sr)


def _build_compactable_run(
    size_threshold: float,
    sources: Sequence[_CompactionSource],
    checker: _CompactionChecker | None,
) -> list[_CompactionSource]:
    """Longest prefix of ``sources`` with similar sizes, optionally validated."""
    run: list[_CompactionSource] = []
    min_size: int | None = None
    for position, src in enumerate(sources):
        if min_size is not None:
            if src.size > _scaled(min_size, size_threshold):
                break
            min_size = min(min_size, src.size)
        else:
            min_size = src.size
        run.append(src)
        if checker is not None:
            dst = src.source.unwrap_sorted_run()
            next_sr = sources[position + 1] if position + 1 < len(sources) else None
            if not checker.check_compaction(run, dst, next_sr):
                run.pop()
                break
    return run


class SizeTieredCompactionScheduler:
    """Schedules size-tiered compactions of L0 SSTables and sorted runs."""

    def __init__(self, options: SizeTieredCompactionSchedulerOptions | None = None) -> None:
        self.options = options or SizeTieredCompactionSchedulerOptions()

    def maybe_schedule_compaction(self, state: CompactorState) -> list[Compaction]:
        """New compactions to run, up to the limit of compactions in flight."""
        compactions: list[Compaction] = []
        l0, srs = self._compaction_sources(state.db_state)
        running = state.compactions()
        checker = _CompactionChecker(
            ConflictChecker(running),
            _BackpressureChecker(
                self.options.include_size_threshold,
                self.options.max_compaction_sources,
                srs,
            ),
        )
        while len(running) + len(compactions) < MAX_IN_FLIGHT_COMPACTIONS:
            compaction = self._pick_next_compaction(l0, srs, checker)
            if compaction is None:
                break
            checker.conflict_checker.add_compaction(compaction)
            compactions.append(compaction)
        return compactions

    def _pick_next_compaction(
        self,
        l0: list[_CompactionSource],
        srs: list[_CompactionSource],
        checker: _CompactionChecker,
    ) -> Compaction | None:
        candidates = self._clamp_min(list(l0))
        if candidates is not None:
            candidates = self._clamp_max(candidates)
            dst = srs[0].source.unwrap_sorted_run() + 1 if srs else 0
            next_sr = srs[0] if srs else None
            if checker.check_compaction(candidates, dst, next_sr):
                return self._create_compaction(candidates, dst)

        for start in range(len(srs)):
            run = self._clamp_min(
                _build_compactable_run(
                    self.options.include_size_threshold, srs[start:], checker
                )
            )
            if run is not None:
                run = self._clamp_max(run)
                return self._create_compaction(run, run[-1].source.unwrap_sorted_run())
        return None

    def _clamp_min(self, sources: list[_CompactionSource]) -> list[_CompactionSource] | None:
        if len(sources) < self.options.min_compaction_sources:
            return None
        return sources

    def _clamp_max(self, sources: list[_CompactionSource]) -> list[_CompactionSource]:
        excess = len(sources) - self.options.max_compaction_sources
        return sources[excess:] if excess > 0 else sources

    @staticmethod
    def _create_compaction(sources: list[_CompactionSource], dst: int) -> Compaction:
        return Compaction([src.source for src in sources], dst)

    @staticmethod
    def _compaction_sources(
        db_state: CoreDbState,
    ) -> tuple[list[_CompactionSource], list[_CompactionSource]]:
        l0 = [
            _CompactionSource(SourceId.sst(h.id.unwrap_compacted_id()), h.estimate_size())
            for h in db_state.l0
        ]
        srs = [
            _CompactionSource(SourceId.sorted_run(sr.id), sr.estimate_size())
            for sr in db_state.compacted
        ]
        return l0, srs


@dataclass
class SizeTieredCompactionSchedulerSupplier:
    """Creates size-tiered schedulers sharing one set of options."""

    options: SizeTieredCompactionSchedulerOptions = field(
        default_factory=SizeTieredCompactionSchedulerOptions
    )

    def compaction_scheduler(self) -> SizeTieredCompactionScheduler:
        return SizeTieredCompactionScheduler(replace(self.options))