from slatecore.iter import KeyValue, KeyValueIterator, RowEntry, ValueDeletable


class ListIterator(KeyValueIterator):
    def __init__(self, entries):
        self._entries = list(entries)

    def next_entry(self):
        return self._entries.pop(0) if self._entries else None


def _value(key, value):
    return RowEntry(key, ValueDeletable(value))


def _tomb(key):
    return RowEntry(key, ValueDeletable.tombstone())


def test_tombstone_flag():
    assert ValueDeletable.tombstone().is_tombstone()
    assert not ValueDeletable(b"v").is_tombstone()
    assert ValueDeletable.tombstone().value is None


def test_next_skips_tombstones():
    it = ListIterator([_tomb(b"a"), _value(b"b", b"1"), _tomb(b"c"), _value(b"d", b"2")])
    assert it.next() == KeyValue(b"b", b"1")
    assert it.next() == KeyValue(b"d", b"2")
    assert it.next() is None


def test_next_entry_returns_tombstones():
    it = ListIterator([_tomb(b"a"), _value(b"b", b"1")])
    first = it.next_entry()
    assert first.key == b"a"
    assert first.value.is_tombstone()
    assert it.next_entry().key == b"b"
    assert it.next_entry() is None


def test_only_tombstones_yield_nothing():
    it = ListIterator([_tomb(b"a"), _tomb(b"b")])
    assert it.next() is None


def test_iteration_protocol():
    entries = [_value(b"a", b"1"), _tomb(b"b"), _value(b"c", b"3")]
    keys = [kv.key for kv in ListIterator(entries)]
    assert keys == [b"a", b"c"]


def test_row_entry_defaults():
    entry = RowEntry(b"k", ValueDeletable(b"v"))
    assert entry.seq == 0
    assert entry.create_ts is None
    assert entry.expire_ts is None