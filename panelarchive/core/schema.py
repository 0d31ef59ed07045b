# panelarchive/core/schema.py
from __future__ import annotations

from typing import Sequence

import pyarrow as pa
import pyarrow.compute as pc

from panelarchive.utils.errors import MissingColumns

# --------------------------------------------------
# 角色列（role columns）
# --------------------------------------------------
LOCATION = "location"
OBSERVATION_TIME = "observation_time"
VERSION = "version"

GROUP_COLUMNS: tuple[str, str] = (LOCATION, OBSERVATION_TIME)
KEY_COLUMNS: tuple[str, str, str] = (LOCATION, OBSERVATION_TIME, VERSION)

# schema metadata keys
META_LOCATION_KIND = b"panelarchive.location_kind"
META_TIME_KIND = b"panelarchive.time_kind"
META_VERSIONS_END = b"panelarchive.versions_end"
META_CLOBBERABLE_START = b"panelarchive.clobberable_versions_start"
META_AS_OF_VERSION = b"panelarchive.as_of_version"


def require_columns(table: pa.Table, cols: Sequence[str], *, who: str) -> None:
    missing = [c for c in cols if c not in table.column_names]
    if missing:
        raise MissingColumns(missing, who=who)


def value_columns(table: pa.Table, *, exclude: Sequence[str] = KEY_COLUMNS) -> list[str]:
    """除角色列以外的所有列（保持原顺序）"""
    return [c for c in table.column_names if c not in exclude]


def sort_canonical(table: pa.Table, keys: Sequence[str] = KEY_COLUMNS) -> pa.Table:
    """按 (location, observation_time, version) 升序排序（稳定）"""
    if table.num_rows <= 1:
        return table
    return table.sort_by([(k, "ascending") for k in keys])


# --------------------------------------------------
# 相邻行比较（表必须已按 canonical 顺序排好）
# --------------------------------------------------
def _as_array(col: pa.ChunkedArray | pa.Array) -> pa.Array:
    if isinstance(col, pa.ChunkedArray):
        col = col.combine_chunks()
    if pa.types.is_dictionary(col.type):
        col = col.dictionary_decode()
    return col


def _pairwise_equal(col: pa.ChunkedArray | pa.Array) -> pa.Array:
    """
    out[i] = (col[i + 1] == col[i])，长度 n - 1

    null == null 视为相等；浮点 NaN == NaN 视为相等。
    """
    arr = _as_array(col)
    n = len(arr)
    if n < 2:
        return pa.array([], type=pa.bool_())

    cur = arr.slice(1)
    prev = arr.slice(0, n - 1)

    try:
        eq = pc.fill_null(pc.equal(cur, prev), False)
    except pa.ArrowNotImplementedError:
        # 嵌套类型（list / struct）没有 equal kernel
        a, b = cur.to_pylist(), prev.to_pylist()
        return pa.array([x == y for x, y in zip(a, b)], type=pa.bool_())

    both_null = pc.and_(pc.is_null(cur), pc.is_null(prev))
    out = pc.or_(eq, both_null)

    if pa.types.is_floating(arr.type):
        both_nan = pc.and_(
            pc.fill_null(pc.is_nan(cur), False),
            pc.fill_null(pc.is_nan(prev), False),
        )
        out = pc.or_(out, both_nan)
    return out


def same_as_previous(table: pa.Table, cols: Sequence[str]) -> pa.Array:
    """
    mask[i] = 第 i 行与第 i-1 行在 cols 上完全相同；mask[0] 恒为 False。

    cols 为空时（没有 value 列）任意相邻两行都视为相同。
    """
    n = table.num_rows
    if n == 0:
        return pa.array([], type=pa.bool_())

    out = pa.array([True] * (n - 1), type=pa.bool_())
    for c in cols:
        out = pc.and_(out, _pairwise_equal(table[c]))

    return pa.concat_arrays([pa.array([False], type=pa.bool_()), out])


def same_as_next(table: pa.Table, cols: Sequence[str]) -> pa.Array:
    """mask[i] = 第 i 行与第 i+1 行在 cols 上完全相同；最后一行恒为 False。"""
    n = table.num_rows
    if n == 0:
        return pa.array([], type=pa.bool_())

    prev = same_as_previous(table, cols)
    return pa.concat_arrays([prev.slice(1), pa.array([False], type=pa.bool_())])


def group_starts(table: pa.Table, cols: Sequence[str] = GROUP_COLUMNS) -> pa.Array:
    """每个 (location, observation_time) 组的第一行为 True"""
    return pc.invert(same_as_previous(table, cols))


def group_ends(table: pa.Table, cols: Sequence[str] = GROUP_COLUMNS) -> pa.Array:
    """每个 (location, observation_time) 组的最后一行为 True"""
    return pc.invert(same_as_next(table, cols))


def location_slices(table: pa.Table) -> dict:
    """
    location → (start, length)，表必须按 location 排好序。
    后续按 location 取子表为 0-copy slice。
    """
    index: dict = {}
    if table.num_rows == 0:
        return index

    starts = group_starts(table, (LOCATION,)).to_pylist()
    locs = table[LOCATION].to_pylist()

    current, start = None, 0
    for i, is_start in enumerate(starts):
        if is_start:
            if i > 0:
                index[current] = (start, i - start)
            current, start = locs[i], i
    index[current] = (start, table.num_rows - start)
    return index
