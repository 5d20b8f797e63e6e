from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from executor.workers.scheduler import PeriodicScheduler, PeriodicTask


def test_task_runs_repeatedly_until_stopped():
    runs = {"n": 0}
    done = threading.Event()

    def action():
        runs["n"] += 1
        if runs["n"] >= 3:
            done.set()

    scheduler = PeriodicScheduler(max_workers=1)
    scheduler.add(PeriodicTask("tick", 0.01, action))
    scheduler.start()
    try:
        assert done.wait(5)
        assert scheduler.running
    finally:
        scheduler.stop()

    assert not scheduler.running
    count = runs["n"]
    assert count >= 3
    assert runs["n"] == count


def test_failing_action_does_not_stop_loop():
    runs = {"n": 0}
    recovered = threading.Event()

    def action():
        runs["n"] += 1
        if runs["n"] == 1:
            raise RuntimeError("first run fails")
        recovered.set()

    scheduler = PeriodicScheduler(max_workers=1)
    scheduler.add(PeriodicTask("flaky", 0.01, action))
    scheduler.start()
    try:
        assert recovered.wait(5)
    finally:
        scheduler.stop()


def test_initial_delay_postpones_first_run():
    ran = threading.Event()
    scheduler = PeriodicScheduler(max_workers=1)
    scheduler.add(PeriodicTask("later", 0.01, ran.set, initial_delay=30))
    scheduler.start()
    scheduler.stop()

    assert not ran.is_set()


def test_more_tasks_than_workers_is_rejected():
    scheduler = PeriodicScheduler(max_workers=1)
    scheduler.add(PeriodicTask("a", 1, lambda: None))
    scheduler.add(PeriodicTask("b", 1, lambda: None))

    with pytest.raises(ValueError):
        scheduler.start()
    assert not scheduler.running


def test_task_registration_rules():
    scheduler = PeriodicScheduler(max_workers=2)
    with pytest.raises(ValueError):
        scheduler.add(PeriodicTask("bad", 0, lambda: None))

    scheduler.add(PeriodicTask("a", 60, lambda: None, initial_delay=60))
    scheduler.start()
    try:
        with pytest.raises(RuntimeError):
            scheduler.add(PeriodicTask("b", 1, lambda: None))
    finally:
        scheduler.stop()


def test_run_once_invokes_action_directly():
    scheduler = PeriodicScheduler()
    scheduler.add(PeriodicTask("answer", 1, lambda: 42))

    assert scheduler.run_once("answer") == 42
    with pytest.raises(KeyError):
        scheduler.run_once("missing")
