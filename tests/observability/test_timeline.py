#!filepath: tests/observability/test_timeline.py

from loguru import logger

from panelarchive.observability.timeline_reporter import TimelineReporter


def test_timeline_log_output():
    tl = {
        "SnapshotEngine": 1.23,
        "MergeEngine.join": 2.34,
    }
    reporter = TimelineReporter(tl, "covid")

    captured = []
    sink_id = logger.add(lambda msg: captured.append(str(msg)))

    reporter.print()

    logger.remove(sink_id)

    output = "\n".join(captured)

    assert "Archive timeline for covid" in output
    assert "SnapshotEngine" in output
    assert "1.23" in output
    assert "MergeEngine.join" in output
    assert "3.570s" in output
