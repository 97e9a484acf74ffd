from collections import deque

import pytest

from slatecore.manifest import (
    CoreDbState,
    SortedRun,
    SsTableHandle,
    SsTableId,
    SsTableInfo,
    new_ulid,
)
from slatecore.size_tiered_compaction import (
    Compaction,
    CompactorState,
    ConflictChecker,
    SizeTieredCompactionScheduler,
    SizeTieredCompactionSchedulerOptions,
    SizeTieredCompactionSchedulerSupplier,
    SourceId,
)


def create_sst(size):
    info = SsTableInfo(first_key=None, index_offset=size)
    return SsTableHandle(SsTableId.compacted(new_ulid()), info)


def create_sr(id, sst_size, num_ssts):
    return SortedRun(id, [create_sst(sst_size) for _ in range(num_ssts)])


def create_sr2(id, size):
    return create_sr(id, size // 2, 2)


def create_sr4(id, size):
    return create_sr(id, size // 4, 4)


def create_db_state(l0, srs):
    return CoreDbState(
        initialized=True,
        l0_last_compacted=None,
        l0=deque(l0),
        compacted=list(srs),
        next_wal_sst_id=0,
        last_compacted_wal_sst_id=0,
        last_clock_tick=0,
        checkpoints=[],
    )


def create_l0_compaction(l0, dst):
    return Compaction([SourceId.sst(h.id.unwrap_compacted_id()) for h in l0], dst)


def create_sr_compaction(srs):
    return Compaction([SourceId.sorted_run(sr) for sr in srs], srs[-1])


def scheduler():
    return SizeTieredCompactionScheduler(SizeTieredCompactionSchedulerOptions())


def test_should_compact_l0s_to_first_sr():
    l0 = [create_sst(1) for _ in range(4)]
    state = CompactorState(create_db_state(l0, []))

    compactions = scheduler().maybe_schedule_compaction(state)

    assert len(compactions) == 1
    expected = [SourceId.sst(h.id.unwrap_compacted_id()) for h in l0]
    assert compactions[0].sources == expected
    assert compactions[0].destination == 0


def test_should_compact_l0s_to_new_sr():
    l0 = [create_sst(1) for _ in range(4)]
    state = CompactorState(create_db_state(l0, [create_sr2(10, 2), create_sr2(0, 2)]))

    compactions = scheduler().maybe_schedule_compaction(state)

    assert len(compactions) == 1
    assert compactions[0].destination == 11


def test_should_not_compact_l0s_if_fewer_than_min_threshold():
    l0 = [create_sst(1) for _ in range(3)]
    state = CompactorState(create_db_state(l0, []))

    assert scheduler().maybe_schedule_compaction(state) == []


def test_should_compact_srs_if_enough_with_similar_size():
    srs = [create_sr2(i, 2) for i in (4, 3, 2, 1, 0)]
    state = CompactorState(create_db_state([], srs))

    compactions = scheduler().maybe_schedule_compaction(state)

    assert compactions == [create_sr_compaction([4, 3, 2, 1, 0])]


def test_should_only_include_srs_if_with_similar_size():
    srs = [create_sr2(i, 2) for i in (4, 3, 2, 1)] + [create_sr2(0, 10)]
    state = CompactorState(create_db_state([], srs))

    compactions = scheduler().maybe_schedule_compaction(state)

    assert compactions == [create_sr_compaction([4, 3, 2, 1])]


def test_should_not_schedule_compaction_for_source_that_is_already_compacting():
    srs = [create_sr2(i, 2) for i in (4, 3, 2, 1, 0)]
    state = CompactorState(create_db_state([], srs))
    state.submit_compaction(create_sr_compaction([3, 2, 1, 0]))

    assert scheduler().maybe_schedule_compaction(state) == []


def test_should_not_compact_srs_if_fewer_than_min_threshold():
    srs = [create_sr2(2, 2), create_sr2(1, 2), create_sr4(0, 2)]
    state = CompactorState(create_db_state([], srs))

    assert scheduler().maybe_schedule_compaction(state) == []


def _twelve_srs():
    return [create_sr2(i, 2) for i in range(11, 0, -1)] + [create_sr4(0, 2)]


def test_should_clamp_compaction_size():
    state = CompactorState(create_db_state([], _twelve_srs()))

    compactions = scheduler().maybe_schedule_compaction(state)

    assert compactions == [create_sr_compaction([7, 6, 5, 4, 3, 2, 1, 0])]


def test_should_apply_backpressure():
    state = CompactorState(create_db_state([], _twelve_srs()))
    state.submit_compaction(create_sr_compaction([7, 6, 5, 4, 3, 2, 1, 0]))

    assert scheduler().maybe_schedule_compaction(state) == []


def test_should_apply_backpressure_for_l0s():
    l0 = [create_sst(1) for _ in range(4)]
    srs = [create_sr2(i, 2) for i in range(7, 0, -1)] + [create_sr4(0, 2)]
    state = CompactorState(create_db_state(l0, srs))
    state.submit_compaction(create_sr_compaction([7, 6, 5, 4, 3, 2, 1, 0]))

    assert scheduler().maybe_schedule_compaction(state) == []


def test_should_return_multiple_compactions():
    l0 = [create_sst(1) for _ in range(4)]
    srs = [create_sr2(i, 2) for i in (10, 9, 8, 7)] + [create_sr4(i, 16) for i in (3, 2, 1, 0)]
    state = CompactorState(create_db_state(l0, srs))

    compactions = scheduler().maybe_schedule_compaction(state)

    assert len(compactions) == 3
    assert compactions[0] == create_l0_compaction(l0, 11)
    assert compactions[1] == create_sr_compaction([10, 9, 8, 7])
    assert compactions[2] == create_sr_compaction([3, 2, 1, 0])


def test_source_id_unwrap_sorted_run():
    assert SourceId.sorted_run(7).unwrap_sorted_run() == 7
    with pytest.raises(ValueError):
        SourceId.sst(123).unwrap_sorted_run()


def test_conflict_checker_detects_sources_and_destination():
    checker = ConflictChecker([create_sr_compaction([3, 2])])
    assert not checker.check_compaction([SourceId.sorted_run(3)], 9)
    assert not checker.check_compaction([SourceId.sorted_run(5)], 2)
    assert checker.check_compaction([SourceId.sorted_run(5)], 4)
    checker.add_compaction(create_sr_compaction([5, 4]))
    assert not checker.check_compaction([SourceId.sorted_run(5)], 6)


def test_submit_conflicting_compaction_is_rejected():
    state = CompactorState(create_db_state([], []))
    state.submit_compaction(create_sr_compaction([3, 2]))
    with pytest.raises(ValueError):
        state.submit_compaction(create_sr_compaction([2, 1]))
    assert state.compactions() == [create_sr_compaction([3, 2])]


def test_supplier_uses_its_options():
    options = SizeTieredCompactionSchedulerOptions(min_compaction_sources=2)
    supplier = SizeTieredCompactionSchedulerSupplier(options)
    sched = supplier.compaction_scheduler()
    srs = [create_sr2(1, 2), create_sr2(0, 2)]
    state = CompactorState(create_db_state([], srs))

    assert sched.options.min_compaction_sources == 2
    assert sched.maybe_schedule_compaction(state) == [create_sr_compaction([1, 0])]