# slatecore

Building blocks for a log-structured key-value storage engine: sorted in-memory
write tables, a binary row format, bloom filters, merged reads over sorted
sources, a versioned manifest that records the database's layout, and a
size-tiered compaction scheduler.

## Installation

```
pip install slatecore
```

To run the tests as well:

```
pip install "slatecore[test]"
pytest
```

## Modules

- `slatecore.filter`: `BloomFilterBuilder` collects keys and `build()`s a
  `BloomFilter`. A filter is encoded as a big-endian u16 probe count followed
  by its bit buffer (`encode()` / `BloomFilter.decode()`). `might_contain(hash)`
  takes the hash from `filter_hash(key)`, which is SipHash-1-3 with a zero key.
  Probe positions come from `probes_for_key` (enhanced double hashing). The probe
  count is `optimal_num_probes(bits_per_key)`.
- `slatecore.iter`: the row types `ValueDeletable` (a value, or a tombstone when
  `value` is `None`), `RowAttributes`, `RowEntry` and `KeyValue`. Also the abstract
  `KeyValueIterator`: subclasses implement `next_entry()`, and `next()` and
  plain iteration skip tombstones.
- `slatecore.merge_iterator`: `TwoMergeIterator` and `MergeIterator` merge sorted
  iterators into one sorted stream. When sources share a key, the row from the
  earlier source is kept and the others are dropped.
- `slatecore.metrics`: `Counter`, `Gauge` and the `DbStats` collection. They are
  thread-safe, and `inc`/`add`/`set` return the previous value.
- `slatecore.row_codec`: `SstRowCodecV0` encodes and decodes `SstRowEntry` rows.
  Keys are stored with a shared prefix stripped, and `restore_full_key(prefix)`
  rebuilds them. Optional expire and create timestamps are marked by `RowFlags`.
  Unknown flag bits raise `InvalidRowFlagsError`.
- `slatecore.manifest`: `SsTableId` (WAL number or compacted ULID),
  `SsTableInfo`, `SsTableHandle`, `SortedRun`, `Checkpoint`, `CoreDbState`,
  `Manifest`, and `new_ulid()`, which returns increasing 128-bit ULIDs.
- `slatecore.manifest_codec`: `ManifestCodec` and `SsTableInfoCodec` turn
  manifests and table metadata into tagged, big-endian bytes and back. Bad input
  raises `CodecError`. `CompressionFormat` maps codec names (`"snappy"`,
  `"zlib"`, `"lz4"`, `"zstd"` or `None`) to their recorded format.
- `slatecore.manifest_store`: `ManifestStore` writes numbered manifest files under
  `<root>/manifest` with put-if-not-exists. `StoredManifest` tracks the latest
  version and writes the next one. If another writer got there first, it raises
  `ManifestVersionExistsError`. `FenceableManifest` claims a writer or compactor
  epoch and raises `FencedError` once a newer one has been claimed.
  `apply_db_state_update` refreshes and retries on version conflicts.
  `InMemoryObjectStore` is the object store these work on.
- `slatecore.mem_table`: `WritableKVTable`, `KVTable`, `ImmutableMemtable` and
  `ImmutableWal`. These are sorted in-memory tables that track their approximate
  size. `iter()` and `range_from(key)` return snapshot iterators, and
  `await_durable` / `await_flush_to_l0` block until the matching `notify_*` call
  or a timeout.
- `slatecore.size_tiered_compaction`: `SizeTieredCompactionScheduler` proposes
  `Compaction`s for a `CompactorState`. Each one compacts at least
  `min_compaction_sources` L0 tables into a new sorted run, or merges a series of
  similarly sized sorted runs. It takes at most `max_compaction_sources` sources
  and keeps no more than four compactions in flight. It also skips candidates
  that conflict with running compactions or that would run into backpressure.

## Example

```python
from slatecore.filter import BloomFilter, BloomFilterBuilder, filter_hash
from slatecore.iter import RowAttributes
from slatecore.mem_table import WritableKVTable

builder = BloomFilterBuilder(10)
builder.add_key(b"apple")
bloom = builder.build()
assert bloom.might_contain(filter_hash(b"apple"))
assert BloomFilter.decode(bloom.encode()) == bloom

table = WritableKVTable()
table.put(b"k2", b"v2", RowAttributes(ts=1))
table.put(b"k1", b"v1", RowAttributes(ts=2))
for kv in table.table.iter():
    print(kv.key, kv.value)   # b'k1' b'v1', then b'k2' b'v2'
```

A manifest store that keeps its data in memory:

```python
from slatecore.manifest import CoreDbState
from slatecore.manifest_store import (
    FenceableManifest, InMemoryObjectStore, ManifestStore, StoredManifest,
)

store = ManifestStore("/db", InMemoryObjectStore())
stored = StoredManifest.init_new_db(store, CoreDbState())
writer = FenceableManifest.init_writer(stored)   # claims writer epoch 1
print(writer.db_state().next_wal_sst_id)          # 1
```

## What it does not do

This package provides the parts but not a database built from them. It has no
`put`/`get` API over the whole store. It does not write or read SSTable files and
has no block format. The only object store is `InMemoryObjectStore`, so nothing
is kept on disk. There are no background WAL or memtable flush tasks and no
garbage collector. The compaction scheduler only proposes compactions and does
not carry them out. Compression codecs are recorded by name only, and no data is
ever compressed.