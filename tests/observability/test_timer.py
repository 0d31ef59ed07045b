#!filepath: tests/observability/test_timer.py

import time

from panelarchive.observability.timer import Timer


def test_timer_measures_elapsed():
    t = Timer(enabled=True)
    t.start("as_of")
    time.sleep(0.01)
    elapsed = t.end("as_of")

    assert isinstance(elapsed, float)
    assert elapsed > 0


def test_timer_end_without_start_is_zero():
    assert Timer(enabled=True).end("never_started") == 0.0


def test_timer_disabled():
    t = Timer(enabled=False)
    t.start("task")

    assert t.end("task") == 0.0
