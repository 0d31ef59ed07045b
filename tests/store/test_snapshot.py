# tests/store/test_snapshot.py
from datetime import date

from panelarchive.store.record_set import KeyedRecordSet


def test_snapshot_accessors(day_rows):
    snap = KeyedRecordSet.build(day_rows).as_of(date(2020, 6, 5))

    assert len(snap) == 3
    assert snap.value_columns == ["cases"]
    assert snap.locations() == ["ca", "ny"]
    assert snap.get("ca", date(2020, 6, 1)) == {"cases": 110}
    assert snap.get("tx", date(2020, 6, 1)) is None
    assert not snap.is_provisional


def test_snapshot_to_dict(day_rows):
    snap = KeyedRecordSet.build(day_rows).as_of(date(2020, 6, 3))

    assert snap.to_dict() == {
        ("ca", date(2020, 6, 1)): {"cases": 100},
        ("ca", date(2020, 6, 2)): {"cases": 120},
        ("ny", date(2020, 6, 1)): {"cases": 300},
    }


def test_filter_time(day_rows):
    snap = KeyedRecordSet.build(day_rows).as_of(date(2020, 6, 5))

    only_second = snap.filter_time(start=date(2020, 6, 2))
    assert only_second.to_dict() == {("ca", date(2020, 6, 2)): {"cases": 120}}
    assert only_second.as_of_version == date(2020, 6, 5)

    only_first = snap.filter_time(end=date(2020, 6, 1))
    assert len(only_first) == 2


def test_to_pandas(day_rows):
    df = KeyedRecordSet.build(day_rows).as_of(date(2020, 6, 5)).to_pandas()

    assert list(df.columns) == ["location", "observation_time", "cases"]
    assert df.attrs["as_of_version"] == date(2020, 6, 5)
