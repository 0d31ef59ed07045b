# tests/engines/test_compact_engine.py
import math

from panelarchive.engines.compact_engine import CompactEngine, compact
from panelarchive.observability.instrumentation import Instrumentation
from panelarchive.store.record_set import KeyedRecordSet


def test_redundant_revision_dropped(int_rows):
    store = KeyedRecordSet.build(int_rows)
    compacted = compact(store)

    versions = [
        (r["location"], r["observation_time"], r["version"])
        for r in compacted.table.to_pylist()
    ]
    assert ("B", 1, 2) not in versions
    assert ("B", 1, 4) in versions
    assert compacted.num_rows == 5


def test_idempotent(int_rows):
    once = compact(KeyedRecordSet.build(int_rows))
    assert compact(once) == once


def test_first_row_of_each_key_kept():
    store = KeyedRecordSet.build([
        dict(location="A", observation_time=1, version=1, x=5.0),
        dict(location="A", observation_time=2, version=1, x=5.0),
    ])
    assert compact(store).num_rows == 2


def test_value_change_back_is_kept():
    store = KeyedRecordSet.build([
        dict(location="A", observation_time=1, version=1, x=1.0),
        dict(location="A", observation_time=1, version=2, x=2.0),
        dict(location="A", observation_time=1, version=3, x=1.0),
    ])
    assert compact(store).num_rows == 3


def test_nulls_and_nans_compare_equal():
    store = KeyedRecordSet.build([
        dict(location="A", observation_time=1, version=1, x=None, y=math.nan),
        dict(location="A", observation_time=1, version=2, x=None, y=math.nan),
    ])
    assert compact(store).num_rows == 1


def test_metadata_preserved(int_rows):
    store = KeyedRecordSet.build(int_rows, versions_end=7, clobberable_versions_start=5)
    compacted = compact(store)

    assert compacted.versions_end == 7
    assert compacted.clobberable_versions_start == 5
    assert store.num_rows == 6


def test_dropped_rows_metric(int_rows):
    inst = Instrumentation()
    CompactEngine(inst=inst).execute(KeyedRecordSet.build(int_rows))
    assert inst.metrics.metrics["compact.dropped_rows"] == 1
