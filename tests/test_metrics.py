import threading

from slatecore.metrics import Counter, DbStats, Gauge


def test_counter():
    counter = Counter()
    counter.inc()
    assert counter.get() == 1
    counter.inc()
    assert counter.get() == 2


def test_counter_returns_previous_value():
    counter = Counter()
    assert counter.inc() == 0
    assert counter.add(5) == 1
    assert counter.get() == 6


def test_gauge():
    gauge = Gauge()
    gauge.set(42)
    assert gauge.get() == 42
    gauge.set(24)
    assert gauge.get() == 24


def test_gauge_set_returns_previous():
    gauge = Gauge()
    assert gauge.set(42) == 0
    assert gauge.set(24) == 42


def test_gauge_bool():
    gauge = Gauge(False)
    assert gauge.get() is False
    gauge.set(True)
    assert gauge.get() is True
    gauge.set(False)
    assert gauge.get() is False


def test_gauge_i64():
    gauge = Gauge()
    assert gauge.get() == 0
    gauge.add(200)
    assert gauge.get() == 200
    gauge.sub(42)
    assert gauge.get() == 158


def test_gauge_inc_dec():
    gauge = Gauge()
    gauge.inc()
    gauge.inc()
    gauge.dec()
    assert gauge.get() == 1


def test_counter_concurrent_increments():
    counter = Counter()

    def work():
        for _ in range(1000):
            counter.inc()

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert counter.get() == 4000


def test_db_stats_counters_are_independent():
    stats = DbStats()
    stats.gc_count.inc()
    assert stats.gc_count.get() == 1
    assert stats.gc_wal_count.get() == 0
    other = DbStats()
    assert other.gc_count.get() == 0