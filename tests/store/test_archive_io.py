# tests/store/test_archive_io.py
import json
from datetime import date

import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from panelarchive.store.archive_io import (
    decode_version,
    encode_version,
    load_store,
    read_feed,
    save_store,
)
from panelarchive.store.record_set import KeyedRecordSet
from panelarchive.utils.errors import (
    ArchiveError,
    ManifestMismatch,
    MissingColumns,
    UserInputError,
)


def test_save_and_load_day_store(tmp_path, day_rows):
    store = KeyedRecordSet.build(
        day_rows,
        versions_end=date(2020, 6, 9),
        clobberable_versions_start=date(2020, 6, 8),
    )
    path = save_store(store, tmp_path / "covid.parquet")

    loaded = load_store(path)

    assert loaded == store
    assert loaded.location_kind == "state"
    assert loaded.time_kind == "day"
    assert loaded.clobberable_versions_start == date(2020, 6, 8)


def test_manifest_written(tmp_path, int_rows):
    store = KeyedRecordSet.build(int_rows)
    feed = tmp_path / "feed.csv"
    feed.write_text("x", encoding="utf-8")

    save_store(store, tmp_path / "cases.parquet", upstream=[feed])

    manifest = json.loads((tmp_path / "cases.manifest.json").read_text(encoding="utf-8"))
    outputs = manifest["outputs"]
    assert outputs["rows"] == 6
    assert outputs["versions_end"] == "4"
    assert outputs["time_kind"] == "integer"
    assert outputs["value_columns"] == ["x"]
    assert manifest["upstream"]["files"][0]["file"] == str(feed)
    assert not (tmp_path / "cases.parquet.tmp").exists()


def test_load_detects_rewritten_file(tmp_path, int_rows):
    path = save_store(KeyedRecordSet.build(int_rows), tmp_path / "cases.parquet")

    table = pq.read_table(path)
    pq.write_table(table.slice(0, 2), path)

    with pytest.raises(ManifestMismatch):
        load_store(path)

    assert load_store(path, verify=False).num_rows == 2


def test_load_without_manifest(tmp_path, int_rows):
    path = save_store(KeyedRecordSet.build(int_rows), tmp_path / "cases.parquet")
    (tmp_path / "cases.manifest.json").unlink()

    assert load_store(path).num_rows == 6


def test_load_rejects_raw_parquet(tmp_path, int_rows, write_parquet):
    path = write_parquet(tmp_path / "raw.parquet", int_rows)
    with pytest.raises(ArchiveError):
        load_store(path)


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_store(tmp_path / "nope.parquet")


def test_custom_time_kind_roundtrip(tmp_path):
    store = KeyedRecordSet.build([
        dict(location="north", observation_time=0.5, version=1.5, x=1),
        dict(location="north", observation_time=0.5, version=2.5, x=2),
    ])
    assert store.time_kind == "custom"

    loaded = load_store(save_store(store, tmp_path / "custom.parquet"))
    assert loaded.versions_end == 2.5
    assert loaded == store


def test_version_encoding():
    assert encode_version(None, "day") is None
    assert encode_version(date(2020, 1, 2), "week") == "2020-01-02"
    assert decode_version("2020-01-02", "day") == date(2020, 1, 2)
    assert decode_version("7", "integer") == 7
    with pytest.raises(UserInputError):
        encode_version(object(), "custom")


# --------------------------------------------------
# read_feed
# --------------------------------------------------
def test_read_csv_feed_day_kind(tmp_path, write_csv):
    path = write_csv(
        tmp_path / "cases.csv",
        "location,observation_time,version,cases",
        [
            "06001,2020-06-01,2020-06-02,10",
            "06001,2020-06-01,2020-06-04,",
        ],
    )

    table = read_feed(path, time_kind="day")

    assert table.schema.field("observation_time").type == pa.date32()
    assert table["location"].to_pylist() == ["06001", "06001"]
    assert table["cases"].to_pylist() == [10, None]

    store = KeyedRecordSet.build(table)
    assert store.location_kind == "county"


def test_read_csv_feed_integer_kind(tmp_path, write_csv):
    path = write_csv(
        tmp_path / "weekly.csv",
        "location,observation_time,version,x",
        ["A,1,1,0.5", "A,2,3,1.5"],
    )

    table = read_feed(path, time_kind="integer")
    assert table.schema.field("version").type == pa.int64()


def test_read_parquet_feed(tmp_path, int_rows, write_parquet):
    path = write_parquet(tmp_path / "raw.parquet", int_rows)
    assert read_feed(path).num_rows == 6


def test_read_feed_errors(tmp_path, write_csv):
    with pytest.raises(FileNotFoundError):
        read_feed(tmp_path / "missing.csv")

    bad = tmp_path / "feed.json"
    bad.write_text("{}", encoding="utf-8")
    with pytest.raises(UserInputError):
        read_feed(bad)

    no_version = write_csv(tmp_path / "nov.csv", "location,observation_time,x", ["A,1,1"])
    with pytest.raises(MissingColumns):
        read_feed(no_version)
