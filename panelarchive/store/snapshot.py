# panelarchive/store/snapshot.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc

from panelarchive.core.kinds import TimeKind
from panelarchive.core.schema import GROUP_COLUMNS, LOCATION, OBSERVATION_TIME, value_columns
from panelarchive.utils.errors import FutureCutoffAdvisory


@dataclass(frozen=True)
class Snapshot:
    """
    Snapshot（as-of 表）

    语义：
      - 每个 (location, observation_time) 一行：cutoff 时已知的最新值
      - 没有 version 列；as_of_version 是整张表的 metadata
      - 不可变，与产生它的 store 互相独立
      - advisories 非空表示结果是 provisional 的（不阻断）
    """

    table: pa.Table
    as_of_version: Any
    location_kind: str
    time_kind: str
    advisories: tuple[FutureCutoffAdvisory, ...] = ()

    # --------------------------------------------------
    @property
    def num_rows(self) -> int:
        return self.table.num_rows

    @property
    def is_provisional(self) -> bool:
        return bool(self.advisories)

    @property
    def value_columns(self) -> list[str]:
        return value_columns(self.table, exclude=GROUP_COLUMNS)

    def __len__(self) -> int:
        return self.table.num_rows

    # --------------------------------------------------
    def get(self, location: Any, observation_time: Any) -> Optional[dict]:
        """单个 key 的 value dict；cutoff 时尚未观测到返回 None"""
        mask = pc.and_(
            pc.equal(self.table[LOCATION], location),
            pc.equal(self.table[OBSERVATION_TIME], observation_time),
        )
        hit = self.table.filter(mask)
        if hit.num_rows == 0:
            return None
        row = hit.slice(0, 1).to_pylist()[0]
        return {c: row[c] for c in self.value_columns}

    def to_dict(self) -> dict[tuple, dict]:
        """{(location, observation_time): {field: value}}"""
        vcols = self.value_columns
        return {
            (row[LOCATION], row[OBSERVATION_TIME]): {c: row[c] for c in vcols}
            for row in self.table.to_pylist()
        }

    def locations(self) -> list:
        if self.table.num_rows == 0:
            return []
        return sorted(pc.unique(self.table[LOCATION]).to_pylist())

    def filter_time(self, start: Any = None, end: Any = None) -> "Snapshot":
        """observation_time ∈ [start, end]（闭区间，None 表示不限）"""
        table = self.table
        time_type = table.schema.field(OBSERVATION_TIME).type
        if start is not None:
            table = table.filter(
                pc.greater_equal(table[OBSERVATION_TIME], TimeKind.scalar(start, time_type))
            )
        if end is not None:
            table = table.filter(
                pc.less_equal(table[OBSERVATION_TIME], TimeKind.scalar(end, time_type))
            )
        return Snapshot(
            table=table,
            as_of_version=self.as_of_version,
            location_kind=self.location_kind,
            time_kind=self.time_kind,
            advisories=self.advisories,
        )

    def to_pandas(self) -> pd.DataFrame:
        df = self.table.to_pandas()
        df.attrs["as_of_version"] = self.as_of_version
        return df
