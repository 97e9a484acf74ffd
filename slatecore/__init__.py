"""Building blocks of a log-structured key-value store: filters, rows, memtables, manifests, compaction."""

__version__ = "0.1.0"