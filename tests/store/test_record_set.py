# tests/store/test_record_set.py
import threading
import time
from datetime import date

import pandas as pd
import pyarrow as pa
import pytest

from panelarchive.store.record_set import KeyedRecordSet
from panelarchive.utils.errors import (
    DuplicateKey,
    InconsistentKind,
    MissingColumns,
    UserInputError,
)


def _rows(store: KeyedRecordSet) -> list[tuple]:
    return [
        (r["location"], r["observation_time"], r["version"], r["x"])
        for r in store.table.to_pylist()
    ]


# --------------------------------------------------
# build
# --------------------------------------------------
def test_build_sorts_canonically(int_rows):
    store = KeyedRecordSet.build(list(reversed(int_rows)))

    assert store.table.column_names[:3] == ["location", "observation_time", "version"]
    assert _rows(store)[0] == ("A", 1, 1, 10.0)
    assert _rows(store)[-1] == ("B", 1, 4, 7.0)
    assert store.time_kind == "integer"
    assert store.location_kind == "custom"
    assert store.versions_end == 4
    assert store.value_columns == ["x"]


def test_build_from_pandas_and_arrow(int_rows):
    from_list = KeyedRecordSet.build(int_rows)
    from_df = KeyedRecordSet.build(pd.DataFrame(int_rows))
    from_table = KeyedRecordSet.build(pa.Table.from_pylist(int_rows))

    assert from_list == from_df == from_table


def test_build_infers_day_and_state(day_rows):
    store = KeyedRecordSet.build(day_rows)

    assert store.time_kind == "day"
    assert store.location_kind == "state"
    assert store.versions_end == date(2020, 6, 5)


def test_build_missing_role_column():
    with pytest.raises(MissingColumns) as exc:
        KeyedRecordSet.build([dict(location="A", observation_time=1, x=1)])
    assert exc.value.missing == ["version"]


def test_build_conflicting_duplicate_key():
    rows = [
        dict(location="A", observation_time=1, version=1, x=1.0),
        dict(location="A", observation_time=1, version=1, x=2.0),
    ]
    with pytest.raises(DuplicateKey) as exc:
        KeyedRecordSet.build(rows)
    assert exc.value.keys == [("A", 1, 1)]


def test_build_exact_duplicate_collapses():
    rows = [dict(location="A", observation_time=1, version=1, x=1.0)] * 2
    assert KeyedRecordSet.build(rows).num_rows == 1


def test_build_keeps_fields_first_seen_later():
    store = KeyedRecordSet.build([
        dict(location="A", observation_time=1, version=1, x=1.0),
        dict(location="A", observation_time=1, version=2, x=2.0, y=5.0),
    ])

    assert store.value_columns == ["x", "y"]
    assert store.table.column("y").to_pylist() == [None, 5.0]


def test_build_mixed_time_representation():
    rows = [
        dict(location="A", observation_time=date(2020, 1, 1), version=1, x=1.0),
    ]
    with pytest.raises(InconsistentKind):
        KeyedRecordSet.build(rows)


def test_build_declared_kind_mismatch(int_rows):
    with pytest.raises(InconsistentKind):
        KeyedRecordSet.build(int_rows, location_kind="state")


def test_build_null_role_value():
    rows = [dict(location=None, observation_time=1, version=1, x=1.0)]
    with pytest.raises(UserInputError):
        KeyedRecordSet.build(rows)


def test_versions_end_cannot_precede_data(int_rows):
    with pytest.raises(UserInputError):
        KeyedRecordSet.build(int_rows, versions_end=2)

    store = KeyedRecordSet.build(int_rows, versions_end=9)
    assert store.versions_end == 9


def test_build_compact(int_rows):
    store = KeyedRecordSet.build(int_rows, compact=True)
    assert ("B", 1, 2, 5.0) not in _rows(store)
    assert store.num_rows == 5


def test_empty_store():
    table = pa.table({
        "location": pa.array([], type=pa.string()),
        "observation_time": pa.array([], type=pa.int64()),
        "version": pa.array([], type=pa.int64()),
        "x": pa.array([], type=pa.float64()),
    })
    store = KeyedRecordSet.build(table)

    assert len(store) == 0
    assert store.versions_end is None
    assert store.versions_observed() == []
    assert store.keys() == []


# --------------------------------------------------
# introspection
# --------------------------------------------------
def test_keys_locations_versions(int_rows):
    store = KeyedRecordSet.build(int_rows)

    assert store.keys() == [("A", 1), ("A", 2), ("B", 1)]
    assert store.locations() == ["A", "B"]
    assert store.versions_observed() == [1, 2, 3, 4]


def test_to_pandas_carries_metadata(int_rows):
    df = KeyedRecordSet.build(int_rows).to_pandas()
    assert df.attrs["versions_end"] == 4
    assert df.attrs["time_kind"] == "integer"
    assert len(df) == 6


# --------------------------------------------------
# value semantics
# --------------------------------------------------
def test_clone_is_independent(int_rows):
    store = KeyedRecordSet.build(int_rows)
    copy = store.clone()

    copy.append([dict(location="C", observation_time=1, version=5, x=1.0)])

    assert store.num_rows == 6
    assert copy.num_rows == 7
    assert store.versions_end == 4
    assert copy.versions_end == 5


def test_truncate_versions_after(int_rows):
    store = KeyedRecordSet.build(int_rows)
    truncated = store.truncate_versions_after(2)

    assert truncated.versions_end == 2
    assert max(r[2] for r in _rows(truncated)) == 2
    assert store.num_rows == 6

    with pytest.raises(UserInputError):
        store.truncate_versions_after(10)


def test_fill_through_version_locf(int_rows):
    store = KeyedRecordSet.build(int_rows)
    filled = store.fill_through_version(8, how="locf")

    assert filled.versions_end == 8
    assert filled.table.equals(store.table)


def test_fill_through_version_na_adds_markers(int_rows):
    store = KeyedRecordSet.build(int_rows)
    filled = store.fill_through_version(8, how="na")

    assert filled.versions_end == 8
    markers = [r for r in _rows(filled) if r[2] == 5]
    assert markers == [("A", 1, 5, None), ("A", 2, 5, None), ("B", 1, 5, None)]
    assert filled.as_of(8).get("A", 1) == {"x": None}
    assert filled.as_of(4).get("A", 1) == {"x": 12.0}


def test_fill_through_version_rejects_earlier(int_rows):
    store = KeyedRecordSet.build(int_rows)
    with pytest.raises(UserInputError):
        store.fill_through_version(2)
    with pytest.raises(UserInputError):
        store.fill_through_version(6, how="mean")


# --------------------------------------------------
# in-place append
# --------------------------------------------------
def test_append_new_revision(int_rows):
    store = KeyedRecordSet.build(int_rows)
    result = store.append([dict(location="A", observation_time=1, version=5, x=13.0)])

    assert result is store
    assert store.versions_end == 5
    assert store.as_of(5).get("A", 1) == {"x": 13.0}


def test_append_identical_row_ignored(int_rows):
    store = KeyedRecordSet.build(int_rows)
    store.append([dict(location="A", observation_time=1, version=3, x=12.0)])
    assert store.num_rows == 6


def test_append_conflict_leaves_store_untouched(int_rows):
    store = KeyedRecordSet.build(int_rows)
    before = store.table

    with pytest.raises(DuplicateKey):
        store.append([dict(location="A", observation_time=1, version=3, x=99.0)])

    assert store.table.equals(before)


def test_append_clobberable_overwrites(int_rows):
    store = KeyedRecordSet.build(int_rows, clobberable_versions_start=3)
    store.append([dict(location="A", observation_time=1, version=3, x=99.0)])

    assert ("A", 1, 3, 99.0) in _rows(store)
    assert ("A", 1, 3, 12.0) not in _rows(store)
    assert store.num_rows == 6


def test_append_schema_mismatch(int_rows):
    store = KeyedRecordSet.build(int_rows)
    with pytest.raises(UserInputError):
        store.append([dict(location="A", observation_time=1, version=5, y=1.0)])


def test_compact_in_place(int_rows):
    store = KeyedRecordSet.build(int_rows)
    store.compact_in_place()
    assert store.num_rows == 5


def test_append_waits_for_compact_in_place(int_rows, monkeypatch):
    store = KeyedRecordSet.build(int_rows)
    compact = KeyedRecordSet.compact
    writer = {}

    def slow_compact(self):
        writer["thread"] = threading.Thread(
            target=store.append,
            args=([dict(location="A", observation_time=2, version=5, x=21.0)],),
        )
        writer["thread"].start()
        time.sleep(0.05)
        return compact(self)

    monkeypatch.setattr(KeyedRecordSet, "compact", slow_compact)
    store.compact_in_place()
    writer["thread"].join(timeout=5)

    assert ("A", 2, 5, 21.0) in _rows(store)
    assert ("B", 1, 2, 5.0) not in _rows(store)
    assert store.num_rows == 6


def test_merge_in_replaces_self_only():
    a = KeyedRecordSet.build([dict(location="A", observation_time=1, version=1, x=10)])
    b = KeyedRecordSet.build([dict(location="A", observation_time=1, version=2, y=5)])
    b_before = b.table

    a.merge_in(b)

    assert a.value_columns == ["x", "y"]
    assert b.table.equals(b_before)


def test_eq_and_unhashable(int_rows):
    assert KeyedRecordSet.build(int_rows) == KeyedRecordSet.build(int_rows)
    assert KeyedRecordSet.build(int_rows) != KeyedRecordSet.build(int_rows, versions_end=5)
    with pytest.raises(TypeError):
        hash(KeyedRecordSet.build(int_rows))
