from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from sweep_dispatch import run_sweep


def _items(n, log=None):
    def task(k):
        if log is not None:
            log.append(k)
        return k * k

    return [(k, lambda k=k: task(k)) for k in range(n)]


def test_sequential_sweep_runs_in_order():
    order = []
    outcome = run_sweep(_items(5, order))
    assert order == [0, 1, 2, 3, 4]
    assert outcome.results == {0: 0, 1: 1, 2: 4, 3: 9, 4: 16}
    assert outcome.complete


def test_executor_sweep_matches_sequential():
    with ThreadPoolExecutor(max_workers=3) as pool:
        outcome = run_sweep(_items(20), executor=pool)
    assert outcome.results == run_sweep(_items(20)).results
    assert not outcome.cancelled


def test_empty_sweep():
    outcome = run_sweep([])
    assert outcome.total == 0
    assert outcome.complete


def test_cancel_before_start():
    event = threading.Event()
    event.set()
    order = []
    outcome = run_sweep(_items(5, order), cancel_event=event)
    assert outcome.cancelled
    assert outcome.results == {}
    assert order == []
    with ThreadPoolExecutor(max_workers=2) as pool:
        assert run_sweep(_items(5, order), executor=pool, cancel_event=event).cancelled
    assert order == []


def test_cancel_mid_sweep_keeps_partial_results():
    event = threading.Event()

    def task(k):
        if k == 2:
            event.set()
        return k

    items = [(k, lambda k=k: task(k)) for k in range(6)]
    outcome = run_sweep(items, cancel_event=event)
    assert outcome.cancelled
    assert outcome.results == {0: 0, 1: 1, 2: 2}
    assert not outcome.complete


def test_progress_is_logged_in_tenths(caplog):
    with caplog.at_level(logging.INFO, logger="sweep_dispatch"):
        run_sweep(_items(20), desc="Demo")
    lines = [r.getMessage() for r in caplog.records if r.name == "sweep_dispatch"]
    assert len(lines) == 10
    assert lines[-1] == "Demo: 100.0% complete (20/20)"
