"""Tests for the coalescing package"""
import threading
import time
from unittest.mock import Mock

import pytest

from coalescing import (
    ExpiringCacheCoalescer,
    ImmediateCoalescer,
    PendingEntry,
    PolledDictionaryCoalescer,
    RemovalReason,
    Strategy,
    create_coalescer,
)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class Recorder:
    """Collects releases; safe to call from several threads"""

    def __init__(self):
        self.calls = []
        self.lock = threading.Lock()
        self.event = threading.Event()

    def __call__(self, path, reason):
        with self.lock:
            self.calls.append((path, reason))
        self.event.set()

    @property
    def paths(self):
        with self.lock:
            return [path for path, _ in self.calls]


def hammer(submit, path, count=50, threads=8):
    barrier = threading.Barrier(threads)

    def worker():
        barrier.wait()
        for _ in range(count):
            submit(path)

    workers = [threading.Thread(target=worker) for _ in range(threads)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()


class TestStrategy:
    @pytest.mark.parametrize("value, expected", [
        ("immediate", Strategy.IMMEDIATE),
        ("polled", Strategy.POLLED_DICTIONARY),
        ("expiring", Strategy.EXPIRING_CACHE),
        ("PolledDictionary", Strategy.POLLED_DICTIONARY),
        ("ExpiringCache", Strategy.EXPIRING_CACHE),
        ("1", Strategy.IMMEDIATE),
        ("2", Strategy.POLLED_DICTIONARY),
        ("3", Strategy.EXPIRING_CACHE),
        (Strategy.IMMEDIATE, Strategy.IMMEDIATE),
    ])
    def test_parse(self, value, expected):
        """Test that names, CamelCase names and numeric selectors are accepted"""
        assert Strategy.parse(value) is expected

    def test_parse_unknown(self):
        """Test that an unknown strategy name is rejected"""
        with pytest.raises(ValueError):
            Strategy.parse("sometimes")


class TestPendingEntry:
    def test_refresh_and_expiry(self):
        """Test that refresh pushes the expiry out by one window"""
        entry = PendingEntry(path="/a", inserted_at=0.0)
        assert not entry.expired(100.0)
        entry.refresh(now=1.0, window=2.0)
        assert entry.expires_at == 3.0
        assert not entry.expired(2.9)
        assert entry.expired(3.0)


class TestCreateCoalescer:
    def test_builds_each_strategy(self):
        """Test that each strategy name builds the matching coalescer"""
        release = Mock()
        assert isinstance(create_coalescer("immediate", release), ImmediateCoalescer)
        assert isinstance(create_coalescer("polled", release), PolledDictionaryCoalescer)
        assert isinstance(create_coalescer("expiring", release), ExpiringCacheCoalescer)

    def test_intervals_passed_through(self):
        """Test that intervals are converted from milliseconds"""
        polled = create_coalescer(Strategy.POLLED_DICTIONARY, Mock(), poll_interval_ms=250)
        expiring = create_coalescer(Strategy.EXPIRING_CACHE, Mock(), sliding_expiration_ms=500)
        assert polled.poll_interval == 0.25
        assert expiring.window == 0.5

    @pytest.mark.parametrize("kwargs", [
        {"strategy": "polled", "poll_interval_ms": 0},
        {"strategy": "expiring", "sliding_expiration_ms": -1},
    ])
    def test_rejects_non_positive_intervals(self, kwargs):
        """Test that zero or negative intervals are rejected"""
        with pytest.raises(ValueError):
            create_coalescer(release=Mock(), **kwargs)


class TestImmediateCoalescer:
    def test_every_submit_releases(self):
        """Test that every notification is released without coalescing"""
        recorder = Recorder()
        coalescer = ImmediateCoalescer(recorder)

        coalescer.submit("/in/a.txt")
        coalescer.submit("/in/a.txt")

        assert recorder.calls == [
            ("/in/a.txt", RemovalReason.IMMEDIATE),
            ("/in/a.txt", RemovalReason.IMMEDIATE),
        ]
        assert coalescer.pending_paths() == []
        assert coalescer.evict("/in/a.txt") is False


class TestPolledDictionaryCoalescer:
    """Test suite for the drain-on-timer strategy"""

    def test_duplicates_collapse_until_drain(self):
        """Test that duplicates wait for the drain and release once"""
        recorder = Recorder()
        coalescer = PolledDictionaryCoalescer(recorder)

        for _ in range(5):
            coalescer.submit("/in/a.txt")
        coalescer.submit("/in/b.txt")

        assert recorder.calls == []
        assert sorted(coalescer.pending_paths()) == ["/in/a.txt", "/in/b.txt"]

        drained = coalescer.drain()

        assert sorted(drained) == ["/in/a.txt", "/in/b.txt"]
        assert sorted(recorder.paths) == ["/in/a.txt", "/in/b.txt"]
        assert all(reason is RemovalReason.DRAINED for _, reason in recorder.calls)
        assert coalescer.pending_paths() == []

    def test_resubmit_after_drain_is_new_entry(self):
        """Test that a path submitted after a drain is released again"""
        recorder = Recorder()
        coalescer = PolledDictionaryCoalescer(recorder)

        coalescer.submit("/in/a.txt")
        coalescer.drain()
        coalescer.submit("/in/a.txt")
        coalescer.drain()

        assert recorder.paths == ["/in/a.txt", "/in/a.txt"]

    def test_reinsert_keeps_original_entry(self):
        """Test that re-inserting a pending path does not update it"""
        clock = FakeClock(1.0)
        coalescer = PolledDictionaryCoalescer(Mock(), clock=clock)
        coalescer.submit("/in/a.txt")
        clock.now = 5.0
        coalescer.submit("/in/a.txt")
        assert coalescer._pending["/in/a.txt"].inserted_at == 1.0

    def test_concurrent_duplicates_release_once(self):
        """Test that concurrent duplicate submits release exactly once"""
        recorder = Recorder()
        coalescer = PolledDictionaryCoalescer(recorder)

        hammer(coalescer.submit, "/in/a.txt")
        coalescer.drain()

        assert recorder.paths == ["/in/a.txt"]

    def test_drain_racing_submits_loses_nothing(self):
        """Test that submits racing a drain all get released"""
        recorder = Recorder()
        coalescer = PolledDictionaryCoalescer(recorder)
        paths = [f"/in/{i}.txt" for i in range(2000)]
        done = threading.Event()

        def drainer():
            while not done.is_set():
                coalescer.drain()

        t = threading.Thread(target=drainer)
        t.start()
        for path in paths:
            coalescer.submit(path)
        done.set()
        t.join()
        coalescer.drain()

        assert sorted(recorder.paths) == sorted(paths)

    def test_evict_does_not_release(self):
        """Test that an evicted path is never released"""
        recorder = Recorder()
        coalescer = PolledDictionaryCoalescer(recorder)
        coalescer.submit("/in/a.txt")

        assert coalescer.evict("/in/a.txt") is True
        assert coalescer.evict("/in/a.txt") is False
        coalescer.drain()

        assert recorder.calls == []

    def test_release_error_does_not_drop_other_paths(self):
        """Test that a failing release does not drop the rest of the drain"""
        calls = []

        def release(path, reason):
            calls.append(path)
            if path == "/in/a.txt":
                raise RuntimeError("boom")

        coalescer = PolledDictionaryCoalescer(release, logger=Mock())
        coalescer.submit("/in/a.txt")
        coalescer.submit("/in/b.txt")
        coalescer.drain()

        assert sorted(calls) == ["/in/a.txt", "/in/b.txt"]

    def test_timer_drains_in_background(self):
        """Test that the timer thread drains on its own"""
        recorder = Recorder()
        with PolledDictionaryCoalescer(recorder, poll_interval_ms=20) as coalescer:
            coalescer.submit("/in/a.txt")
            assert recorder.event.wait(2)

        assert recorder.paths == ["/in/a.txt"]

    def test_stop_discards_pending(self):
        """Test that stopping discards pending paths with a warning"""
        recorder = Recorder()
        logger = Mock()
        coalescer = PolledDictionaryCoalescer(recorder, poll_interval_ms=60000, logger=logger)
        coalescer.start()
        coalescer.submit("/in/a.txt")
        coalescer.stop()

        assert recorder.calls == []
        assert coalescer.pending_paths() == []
        assert logger.warning.called


class TestExpiringCacheCoalescer:
    """Test suite for the sliding-expiration strategy"""

    def test_release_after_quiet_period(self):
        """Test that a path is released once its window elapses"""
        recorder = Recorder()
        clock = FakeClock()
        coalescer = ExpiringCacheCoalescer(recorder, sliding_expiration_ms=2000, clock=clock)

        coalescer.submit("/in/a.txt")
        clock.now = 1.9
        assert coalescer.expire_due() == []
        clock.now = 2.0
        assert coalescer.expire_due() == ["/in/a.txt"]

        assert recorder.calls == [("/in/a.txt", RemovalReason.EXPIRED)]
        assert coalescer.pending_paths() == []

    def test_sliding_refresh_times_from_last_event(self):
        """Test that refreshing every second for ten seconds releases once, two seconds after the last refresh"""
        recorder = Recorder()
        clock = FakeClock()
        coalescer = ExpiringCacheCoalescer(recorder, sliding_expiration_ms=2000, clock=clock)

        for second in range(11):
            clock.now = float(second)
            coalescer.submit("/in/a.txt")
            coalescer.expire_due()
        assert recorder.calls == []

        clock.now = 11.9
        coalescer.expire_due()
        assert recorder.calls == []

        clock.now = 12.0
        coalescer.expire_due()
        clock.now = 20.0
        coalescer.expire_due()
        assert recorder.paths == ["/in/a.txt"]

    def test_refresh_keeps_single_entry(self):
        """Test that a refresh extends the existing entry instead of adding one"""
        clock = FakeClock()
        coalescer = ExpiringCacheCoalescer(Mock(), clock=clock)
        coalescer.submit("/in/a.txt")
        clock.now = 1.5
        coalescer.submit("/in/a.txt")

        assert coalescer.pending_paths() == ["/in/a.txt"]
        entry = coalescer._entries["/in/a.txt"]
        assert entry.inserted_at == 0.0
        assert entry.expires_at == 3.5

    def test_paths_expire_independently(self):
        """Test that each path has its own expiry"""
        recorder = Recorder()
        clock = FakeClock()
        coalescer = ExpiringCacheCoalescer(recorder, sliding_expiration_ms=1000, clock=clock)

        coalescer.submit("/in/a.txt")
        clock.now = 0.5
        coalescer.submit("/in/b.txt")
        clock.now = 1.0
        coalescer.expire_due()
        assert recorder.paths == ["/in/a.txt"]
        clock.now = 1.5
        coalescer.expire_due()
        assert recorder.paths == ["/in/a.txt", "/in/b.txt"]

    def test_evict_does_not_release(self):
        """Test that an evicted path is never released"""
        recorder = Recorder()
        logger = Mock()
        clock = FakeClock()
        coalescer = ExpiringCacheCoalescer(recorder, clock=clock, logger=logger)
        coalescer.submit("/in/a.txt")

        assert coalescer.evict("/in/a.txt") is True
        assert coalescer.evict("/in/a.txt") is False
        clock.now = 10.0
        coalescer.expire_due()

        assert recorder.calls == []
        assert logger.warning.called

    def test_replace_does_not_release_old_entry(self):
        """Test that replacing an entry drops the old one without releasing it"""
        recorder = Recorder()
        clock = FakeClock()
        coalescer = ExpiringCacheCoalescer(recorder, sliding_expiration_ms=2000, clock=clock)
        coalescer.submit("/in/a.txt")
        clock.now = 1.0
        coalescer.replace("/in/a.txt")

        assert coalescer._entries["/in/a.txt"].inserted_at == 1.0
        clock.now = 2.5
        coalescer.expire_due()
        assert recorder.calls == []
        clock.now = 3.0
        coalescer.expire_due()
        assert recorder.calls == [("/in/a.txt", RemovalReason.EXPIRED)]

    def test_concurrent_duplicates_release_once(self):
        """Test that concurrent duplicate submits release exactly once"""
        recorder = Recorder()
        clock = FakeClock()
        coalescer = ExpiringCacheCoalescer(recorder, clock=clock)

        hammer(coalescer.submit, "/in/a.txt")
        clock.now = 100.0
        coalescer.expire_due()
        coalescer.expire_due()

        assert recorder.paths == ["/in/a.txt"]

    def test_manager_thread_releases(self):
        """Test that the manager thread releases expired paths"""
        recorder = Recorder()
        with ExpiringCacheCoalescer(recorder, sliding_expiration_ms=30) as coalescer:
            coalescer.submit("/in/a.txt")
            assert recorder.event.wait(2)

        assert recorder.calls == [("/in/a.txt", RemovalReason.EXPIRED)]

    def test_manager_thread_waits_for_quiet(self):
        """Test that the manager thread waits until refreshes stop"""
        recorder = Recorder()
        with ExpiringCacheCoalescer(recorder, sliding_expiration_ms=500) as coalescer:
            for _ in range(5):
                coalescer.submit("/in/a.txt")
                time.sleep(0.05)
            assert recorder.calls == []
            assert recorder.event.wait(2)

        assert recorder.paths == ["/in/a.txt"]

    def test_stop_discards_pending_without_release(self):
        """Test that stopping drops pending paths without releasing them"""
        recorder = Recorder()
        coalescer = ExpiringCacheCoalescer(recorder, sliding_expiration_ms=60000)
        coalescer.start()
        coalescer.submit("/in/a.txt")
        coalescer.stop()

        assert recorder.calls == []
        assert coalescer.pending_paths() == []
