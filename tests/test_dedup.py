"""
Tests for the transfer seen-set.
"""
import threading

import pytest

from core.dedup import Deduplicator


def test_observe_true_once():
    dedup = Deduplicator()
    assert dedup.observe("Native:0x1") is True
    assert dedup.observe("Native:0x1") is False
    assert dedup.observe("ERC20:0x1") is True
    assert len(dedup) == 2
    assert "Native:0x1" in dedup


def test_concurrent_observe_counts_each_key_once():
    dedup = Deduplicator()
    keys = [f"ERC20:0x{i:064x}" for i in range(500)]
    results = []
    lock = threading.Lock()

    def worker():
        local = [dedup.observe(k) for k in keys]
        with lock:
            results.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 500 * 8
    assert sum(results) == 500
    assert len(dedup) == 500


def test_capacity_forgets_oldest_first():
    dedup = Deduplicator(capacity=3)
    for key in ("a", "b", "c"):
        assert dedup.observe(key)

    # repeat has no effect on eviction order
    assert dedup.observe("a") is False
    assert dedup.observe("d") is True

    assert "a" not in dedup
    assert all(k in dedup for k in ("b", "c", "d"))
    assert len(dedup) == 3


def test_invalid_capacity():
    with pytest.raises(ValueError):
        Deduplicator(capacity=0)
