# tests/conftest.py
from __future__ import annotations

import multiprocessing
from datetime import date
from pathlib import Path

import pyarrow as pa
import pyarrow.parquet as pq
import pytest
from loguru import logger


@pytest.fixture(autouse=True)
def disable_file_logger():
    logger.remove()
    logger.add(lambda msg: None)
    yield


@pytest.fixture(scope="session", autouse=True)
def _set_start_method():
    multiprocessing.set_start_method("spawn", force=True)


@pytest.fixture
def int_rows() -> list[dict]:
    """
    两个 location、整数时间轴的 revision feed：

      A,1: v1=10, v3=12
      A,2: v2=20
      B,1: v1=5, v2=5（冗余）, v4=7
    """
    return [
        dict(location="A", observation_time=1, version=1, x=10.0),
        dict(location="A", observation_time=1, version=3, x=12.0),
        dict(location="A", observation_time=2, version=2, x=20.0),
        dict(location="B", observation_time=1, version=1, x=5.0),
        dict(location="B", observation_time=1, version=2, x=5.0),
        dict(location="B", observation_time=1, version=4, x=7.0),
    ]


@pytest.fixture
def day_rows() -> list[dict]:
    return [
        dict(location="ca", observation_time=date(2020, 6, 1), version=date(2020, 6, 2), cases=100),
        dict(location="ca", observation_time=date(2020, 6, 1), version=date(2020, 6, 5), cases=110),
        dict(location="ca", observation_time=date(2020, 6, 2), version=date(2020, 6, 3), cases=120),
        dict(location="ny", observation_time=date(2020, 6, 1), version=date(2020, 6, 2), cases=300),
    ]


@pytest.fixture
def write_parquet(tmp_path):
    def _write(path: Path, rows, schema=None) -> Path:
        table = pa.Table.from_pylist(rows, schema=schema)
        pq.write_table(table, path)
        return path

    return _write


@pytest.fixture
def write_csv(tmp_path):
    def _write(path: Path, header: str, lines: list[str]) -> Path:
        path.write_text("\n".join([header, *lines]) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def dummy_file(tmp_path: Path) -> Path:
    p = tmp_path / "input.csv"
    p.write_text("hello world", encoding="utf-8")
    return p


@pytest.fixture
def dummy_output(tmp_path: Path) -> Path:
    p = tmp_path / "output.parquet"
    p.write_text("output data", encoding="utf-8")
    return p
