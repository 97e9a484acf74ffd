import threading

import pytest

from slatecore.iter import RowAttributes, ValueDeletable
from slatecore.mem_table import (
    ImmutableMemtable,
    ImmutableWal,
    KVTable,
    MemTableIterator,
    ValueWithAttributes,
    WritableKVTable,
)


def gen_attrs(ts):
    return RowAttributes(ts=ts, expire_ts=None)


def filled_table():
    table = WritableKVTable()
    table.put(b"abc333", b"value3", gen_attrs(1))
    table.put(b"abc111", b"value1", gen_attrs(2))
    table.put(b"abc555", b"value5", gen_attrs(3))
    table.put(b"abc444", b"value4", gen_attrs(4))
    table.put(b"abc222", b"value2", gen_attrs(5))
    return table


def test_memtable_iter():
    it = filled_table().table.iter()
    for n in (1, 2, 3, 4, 5):
        kv = it.next()
        assert kv.key == b"abc%d%d%d" % (n, n, n)
        assert kv.value == b"value%d" % n
    assert it.next() is None


def test_memtable_iter_entry_attrs():
    table = WritableKVTable()
    table.put(b"abc333", b"value3", gen_attrs(1))
    table.put(b"abc111", b"value1", gen_attrs(2))
    it = table.table.iter()
    entry = it.next_entry()
    assert entry.key == b"abc111"
    assert entry.create_ts == 2
    entry = it.next_entry()
    assert entry.key == b"abc333"
    assert entry.create_ts == 1
    assert it.next() is None


def test_memtable_range_from_existing_key():
    it = filled_table().table.range_from(b"abc333")
    assert [(kv.key, kv.value) for kv in it] == [
        (b"abc333", b"value3"),
        (b"abc444", b"value4"),
        (b"abc555", b"value5"),
    ]


def test_memtable_range_from_nonexisting_key():
    it = filled_table().table.range_from(b"abc345")
    assert [(kv.key, kv.value) for kv in it] == [
        (b"abc444", b"value4"),
        (b"abc555", b"value5"),
    ]


def test_memtable_iter_delete():
    table = WritableKVTable()
    table.put(b"abc333", b"value3", gen_attrs(1))
    table.delete(b"abc333", gen_attrs(2))
    assert table.table.iter().next() is None
    entry = table.table.iter().next_entry()
    assert entry.value.is_tombstone()


def test_memtable_track_sz():
    table = WritableKVTable()
    table.put(b"abc333", b"val1", gen_attrs(1))
    assert table.size() == 18
    table.put(b"def456", b"blablabla", RowAttributes(ts=None, expire_ts=None))
    assert table.size() == 33
    table.put(b"def456", b"blabla", gen_attrs(3))
    assert table.size() == 38
    table.delete(b"abc333", gen_attrs(4))
    assert table.size() == 26


def test_get_and_is_empty():
    table = KVTable()
    assert table.is_empty() is True
    assert table.get(b"k") is None
    table.put(b"k", b"v", gen_attrs(7))
    assert table.is_empty() is False
    assert table.get(b"k") == ValueWithAttributes(ValueDeletable(b"v"), gen_attrs(7))
    table.delete(b"k", gen_attrs(8))
    assert table.get(b"k").value.is_tombstone()


def test_iterator_is_snapshot():
    table = KVTable()
    table.put(b"a", b"1", gen_attrs(1))
    it = table.iter()
    table.put(b"b", b"2", gen_attrs(2))
    assert [kv.key for kv in it] == [b"a"]


def test_memtable_iterator_from_entries():
    entries = [(b"x", ValueWithAttributes(ValueDeletable(b"1"), RowAttributes(3, 9)))]
    it = MemTableIterator(entries)
    entry = it.next_entry()
    assert (entry.key, entry.value.value, entry.seq, entry.create_ts, entry.expire_ts) == (
        b"x",
        b"1",
        0,
        3,
        9,
    )
    assert it.next_entry() is None


def test_await_durable():
    table = KVTable()
    assert table.await_durable(timeout=0.01) is False
    threading.Timer(0.01, table.notify_durable).start()
    assert table.await_durable(timeout=5) is True


def test_immutable_memtable_flush_notification():
    writable = filled_table()
    imm = ImmutableMemtable(writable, 42)
    assert imm.last_wal_id == 42
    assert imm.table is writable.table
    assert imm.await_flush_to_l0(timeout=0.01) is False
    imm.notify_flush_to_l0()
    assert imm.await_flush_to_l0(timeout=0.01) is True


def test_immutable_wal():
    writable = filled_table()
    wal = ImmutableWal(7, writable)
    assert wal.id == 7
    assert wal.table.get(b"abc111").value.value == b"value1"


@pytest.mark.parametrize("start,expected", [(b"", 5), (b"abc556", 0), (b"abc111", 5)])
def test_range_from_counts(start, expected):
    assert len(list(filled_table().table.range_from(start))) == expected