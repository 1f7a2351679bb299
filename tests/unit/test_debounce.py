"""Unit tests for the shared minimum run interval."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from analytics_workflows.engine.debounce import RunTracker

T0 = datetime(2025, 1, 1, tzinfo=UTC)


def test_first_claim_succeeds_and_second_is_rejected() -> None:
    tracker = RunTracker(timedelta(seconds=10))

    assert tracker.try_claim("a", T0) == (True, None)
    assert tracker.try_claim("a", T0 + timedelta(seconds=9)) == (False, T0)
    assert tracker.try_claim("a", T0 + timedelta(seconds=10)) == (True, T0)


def test_definitions_are_tracked_independently() -> None:
    tracker = RunTracker(timedelta(seconds=10))

    assert tracker.try_claim("a", T0)[0]
    assert tracker.try_claim("b", T0)[0]


def test_abandon_restores_previous_stamp() -> None:
    tracker = RunTracker(timedelta(seconds=10))
    tracker.complete("a", T0)

    claimed, previous = tracker.try_claim("a", T0 + timedelta(seconds=30))
    assert claimed
    tracker.abandon("a", previous)

    assert tracker.last_run("a") == T0
    assert tracker.try_claim("a", T0 + timedelta(seconds=31))[0]


def test_abandon_without_previous_forgets() -> None:
    tracker = RunTracker(timedelta(seconds=10))
    _, previous = tracker.try_claim("a", T0)

    tracker.abandon("a", previous)

    assert tracker.last_run("a") is None


def test_zero_interval_admits_overlapping_runs() -> None:
    tracker = RunTracker(timedelta(0))

    assert tracker.try_claim("a", T0)[0]
    assert tracker.try_claim("a", T0)[0]


def test_negative_interval_is_rejected() -> None:
    with pytest.raises(ValueError):
        RunTracker(timedelta(seconds=-1))


def test_concurrent_claims_admit_exactly_one() -> None:
    tracker = RunTracker(timedelta(seconds=10))
    barrier = threading.Barrier(8)
    results: list[bool] = []
    lock = threading.Lock()

    def _claim() -> None:
        barrier.wait()
        claimed, _ = tracker.try_claim("a", T0)
        with lock:
            results.append(claimed)

    threads = [threading.Thread(target=_claim) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
