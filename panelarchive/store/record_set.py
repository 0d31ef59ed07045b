# panelarchive/store/record_set.py
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Sequence

import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc

from panelarchive import logs
from panelarchive.core.kinds import LocationKind, TimeKind
from panelarchive.core.schema import (
    GROUP_COLUMNS,
    KEY_COLUMNS,
    LOCATION,
    OBSERVATION_TIME,
    VERSION,
    group_ends,
    require_columns,
    same_as_previous,
    sort_canonical,
    value_columns,
)
from panelarchive.utils.errors import DuplicateKey, InconsistentKind, UserInputError


RowsLike = pa.Table | pd.DataFrame | Sequence[Mapping[str, Any]]

_ORIGIN = "__origin"


@dataclass(frozen=True)
class _StoreState:
    """
    一次性替换的 store 状态。

    读者拿到的永远是完整的一份（table + metadata 同时切换）。
    """

    table: pa.Table
    versions_end: Any
    clobberable_versions_start: Any


class KeyedRecordSet:
    """
    KeyedRecordSet（canonical store）

    存储 (location, observation_time, version) → value tuple，每个 key 最多一行。

    设计铁律：
      1. table 永远按 (location, observation_time, version) 升序
      2. location_kind / time_kind 构造后不可变
      3. 值语义：所有派生操作返回新对象；clone() 是获得独立可变副本的唯一途径
      4. 原地操作（append / merge_in / compact_in_place）只替换本对象的状态，
         先在旁边构造好新表再整体切换（copy-on-write）
    """

    def __init__(
            self,
            *,
            table: pa.Table,
            location_kind: str,
            time_kind: str,
            versions_end: Any = None,
            clobberable_versions_start: Any = None,
    ) -> None:
        # 只接受已经 canonical 的表；外部输入请走 build()
        self._location_kind = location_kind
        self._time_kind = time_kind
        self._state = _StoreState(
            table=table,
            versions_end=versions_end,
            clobberable_versions_start=clobberable_versions_start,
        )
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------
    @classmethod
    def build(
            cls,
            rows: RowsLike,
            location_kind: Optional[str] = None,
            time_kind: Optional[str] = None,
            *,
            versions_end: Any = None,
            clobberable_versions_start: Any = None,
            compact: bool = False,
    ) -> "KeyedRecordSet":
        """
        从原始 revision feed 构造 store。

        Parameters
        ----------
        rows :
            list[dict] / pyarrow.Table / pandas.DataFrame，
            必须包含 location / observation_time / version
        location_kind, time_kind :
            None 时从数据推断；声明了但与数据不符 → InconsistentKind
        versions_end :
            store 已知完整到的版本，默认 = 最大版本，不能早于最大版本
        compact :
            构造后立即做一次 compaction

        Raises
        ------
        DuplicateKey, InconsistentKind, MissingColumns, UserInputError
        """
        table = _to_table(rows)
        require_columns(table, KEY_COLUMNS, who="KeyedRecordSet.build")

        table, location_kind, time_kind = _normalize(table, location_kind, time_kind)
        table = _dedupe(sort_canonical(table))

        max_version = _max_version(table)
        versions_end = _resolve_versions_end(versions_end, max_version, time_kind)
        clobberable_versions_start = _check_clobberable(
            clobberable_versions_start, versions_end, time_kind
        )

        store = cls(
            table=table,
            location_kind=location_kind,
            time_kind=time_kind,
            versions_end=versions_end,
            clobberable_versions_start=clobberable_versions_start,
        )
        logs.info(
            f"[KeyedRecordSet] built rows={table.num_rows} "
            f"location_kind={location_kind} time_kind={time_kind} versions_end={versions_end}"
        )

        if compact:
            return store.compact()
        return store

    def _derive(self, table: pa.Table, **changes) -> "KeyedRecordSet":
        """同 kind 的新 store（engine 内部使用，table 必须已 canonical）"""
        state = replace(self._state, table=table, **changes)
        return KeyedRecordSet(
            table=state.table,
            location_kind=self._location_kind,
            time_kind=self._time_kind,
            versions_end=state.versions_end,
            clobberable_versions_start=state.clobberable_versions_start,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def table(self) -> pa.Table:
        """canonical table（Arrow 不可变，读者无法写穿）"""
        return self._state.table

    @property
    def location_kind(self) -> str:
        return self._location_kind

    @property
    def time_kind(self) -> str:
        return self._time_kind

    @property
    def versions_end(self) -> Any:
        return self._state.versions_end

    @property
    def clobberable_versions_start(self) -> Any:
        return self._state.clobberable_versions_start

    @property
    def num_rows(self) -> int:
        return self._state.table.num_rows

    @property
    def value_columns(self) -> list[str]:
        return value_columns(self._state.table)

    @property
    def time_type(self) -> pa.DataType:
        return self._state.table.schema.field(VERSION).type

    def __len__(self) -> int:
        return self.num_rows

    def __repr__(self) -> str:
        return (
            f"KeyedRecordSet(rows={self.num_rows}, location_kind={self._location_kind!r}, "
            f"time_kind={self._time_kind!r}, versions_end={self.versions_end!r}, "
            f"value_columns={self.value_columns})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyedRecordSet):
            return NotImplemented
        return (
                self._location_kind == other._location_kind
                and self._time_kind == other._time_kind
                and self.versions_end == other.versions_end
                and self.clobberable_versions_start == other.clobberable_versions_start
                and self.table.equals(other.table)
        )

    __hash__ = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def versions_observed(self) -> list:
        """实际出现过的版本（升序去重）"""
        table = self._state.table
        if table.num_rows == 0:
            return []
        return sorted(pc.unique(table[VERSION]).to_pylist())

    def keys(self) -> list[tuple]:
        """所有 (location, observation_time)（canonical 顺序）"""
        table = self._state.table
        ends = table.filter(group_ends(table, GROUP_COLUMNS))
        return list(zip(ends[LOCATION].to_pylist(), ends[OBSERVATION_TIME].to_pylist()))

    def locations(self) -> list:
        table = self._state.table
        if table.num_rows == 0:
            return []
        return sorted(pc.unique(table[LOCATION]).to_pylist())

    def to_pandas(self) -> pd.DataFrame:
        df = self._state.table.to_pandas()
        df.attrs["versions_end"] = self.versions_end
        df.attrs["location_kind"] = self._location_kind
        df.attrs["time_kind"] = self._time_kind
        return df

    # ------------------------------------------------------------------
    # Value-semantic operations
    # ------------------------------------------------------------------
    def clone(self) -> "KeyedRecordSet":
        """独立副本：之后对任一方的原地操作互不可见"""
        return self._derive(self._state.table)

    def compact(self) -> "KeyedRecordSet":
        from panelarchive.engines.compact_engine import compact

        return compact(self)

    def as_of(self, cutoff: Any):
        from panelarchive.engines.snapshot_engine import as_of

        return as_of(self, cutoff)

    def truncate_versions_after(self, max_version: Any) -> "KeyedRecordSet":
        """
        只保留 version <= max_version 的行，versions_end = max_version
        """
        TimeKind.check_scalar(self._time_kind, max_version, what="max_version")
        if self.versions_end is not None and max_version > self.versions_end:
            raise UserInputError(
                f"max_version={max_version!r} is after versions_end={self.versions_end!r}"
            )

        table = self._state.table
        mask = pc.less_equal(table[VERSION], TimeKind.scalar(max_version, self.time_type))
        clobber = self.clobberable_versions_start
        if clobber is not None and clobber > max_version:
            clobber = None

        return self._derive(
            table.filter(mask),
            versions_end=max_version,
            clobberable_versions_start=clobber,
        )

    def fill_through_version(self, version: Any, how: str = "na") -> "KeyedRecordSet":
        """
        声明 store 完整到更晚的 version。

          - how="locf" : 只推进 versions_end（期间没有变化）
          - how="na"   : 在 versions_end 之后的第一个版本，为每个最新值
                         不全为空的 key 追加一行全空值（"值未知"标记）
        """
        TimeKind.check_scalar(self._time_kind, version, what="version")
        if how not in ("na", "locf"):
            raise UserInputError(f"how must be 'na' or 'locf', got {how!r}")

        current_end = self.versions_end
        if current_end is None or version <= current_end:
            if current_end is not None and version < current_end:
                raise UserInputError(
                    f"version={version!r} is before versions_end={current_end!r}"
                )
            return self._derive(self._state.table, versions_end=version)

        if how == "locf":
            return self._derive(self._state.table, versions_end=version)

        marker_version = TimeKind.next_after(self._time_kind, current_end)
        if marker_version is None or marker_version > version:
            marker_version = version

        table = self._state.table
        vcols = value_columns(table)
        latest = table.filter(group_ends(table, GROUP_COLUMNS))

        if vcols and latest.num_rows:
            all_null = pa.array([True] * latest.num_rows, type=pa.bool_())
            for c in vcols:
                all_null = pc.and_(all_null, pc.is_null(latest[c]))
            needs_marker = latest.filter(pc.invert(all_null))
        else:
            needs_marker = latest.slice(0, 0)

        if needs_marker.num_rows:
            n = needs_marker.num_rows
            cols = {
                LOCATION: needs_marker[LOCATION],
                OBSERVATION_TIME: needs_marker[OBSERVATION_TIME],
                VERSION: pa.array([marker_version] * n, type=self.time_type),
            }
            for c in vcols:
                cols[c] = pa.nulls(n, type=table.schema.field(c).type)
            markers = pa.table(cols, schema=table.schema)
            table = sort_canonical(pa.concat_tables([table, markers]))

        logs.info(
            f"[KeyedRecordSet] fill_through_version how=na version={version!r} "
            f"markers={needs_marker.num_rows} at {marker_version!r}"
        )
        return self._derive(table, versions_end=version)

    # ------------------------------------------------------------------
    # In-place operations（只影响本对象）
    # ------------------------------------------------------------------
    def append(self, rows: RowsLike) -> "KeyedRecordSet":
        """
        原地追加一批新的 revision。

          - 与已有行 key + value 完全相同 → 忽略
          - key 相同但 value 不同 → DuplicateKey，
            除非 version >= clobberable_versions_start（新值覆盖旧值）
          - 任何错误都不改变当前 store
        """
        incoming = KeyedRecordSet.build(
            rows,
            location_kind=self._location_kind,
            time_kind=self._time_kind,
        )

        with self._write_lock:
            state = self._state
            current = state.table

            incoming_table = _align_schema(incoming.table, current.schema)

            merged = pa.concat_tables([
                current.append_column(_ORIGIN, pa.array([0] * current.num_rows, type=pa.int8())),
                incoming_table.append_column(
                    _ORIGIN, pa.array([1] * incoming_table.num_rows, type=pa.int8())
                ),
            ])
            merged = sort_canonical(merged, keys=(*KEY_COLUMNS, _ORIGIN))

            vcols = value_columns(current)
            dup_key = same_as_previous(merged, KEY_COLUMNS)
            same_val = same_as_previous(merged, vcols)
            conflict = pc.and_(dup_key, pc.invert(same_val))

            drop_new = pc.and_(dup_key, same_val)
            drop_old = pa.array([False] * merged.num_rows, type=pa.bool_())

            if pc.any(conflict).as_py():
                clobber_start = state.clobberable_versions_start
                if clobber_start is None:
                    clobber = pa.array([False] * merged.num_rows, type=pa.bool_())
                else:
                    clobber = pc.and_(
                        conflict,
                        pc.greater_equal(
                            merged[VERSION].combine_chunks(),
                            TimeKind.scalar(clobber_start, self.time_type),
                        ),
                    )
                rejected = pc.and_(conflict, pc.invert(clobber))
                if pc.any(rejected).as_py():
                    keys = merged.filter(rejected).select(list(KEY_COLUMNS)).to_pylist()
                    raise DuplicateKey([tuple(k.values()) for k in keys])

                # clobber：删掉被覆盖的旧行（位于新行之前一行）
                drop_old = pa.concat_arrays([clobber.slice(1), pa.array([False], type=pa.bool_())])
                logs.warning(
                    f"[KeyedRecordSet] clobbered {pc.sum(clobber).as_py()} rows "
                    f"at versions >= {clobber_start!r}"
                )

            keep = pc.invert(pc.or_(drop_new, drop_old))
            table = merged.filter(keep).drop([_ORIGIN])

            versions_end = state.versions_end
            if incoming.versions_end is not None and (
                    versions_end is None or incoming.versions_end > versions_end
            ):
                versions_end = incoming.versions_end

            self._state = _StoreState(
                table=table,
                versions_end=versions_end,
                clobberable_versions_start=state.clobberable_versions_start,
            )

        logs.info(
            f"[KeyedRecordSet] append rows_in={incoming.num_rows} "
            f"rows_now={table.num_rows} versions_end={versions_end!r}"
        )
        return self

    def compact_in_place(self) -> "KeyedRecordSet":
        # 读取 / 计算 / 切换都在锁内，期间的 append 排在其后
        with self._write_lock:
            self._state = self.compact()._state
        return self

    def merge_in(
            self,
            other: "KeyedRecordSet",
            policy: str = "locf",
            prefixes: Optional[tuple[str, str]] = None,
    ) -> "KeyedRecordSet":
        """
        原地 merge：本对象（A 侧）被替换为 merge(self, other) 的结果。
        other 只读，不会被修改。
        """
        from panelarchive.engines.merge_engine import merge

        with self._write_lock:
            self._state = merge(self, other, policy=policy, prefixes=prefixes)._state
        return self


# ======================================================================
# helpers
# ======================================================================
def _to_table(rows: RowsLike) -> pa.Table:
    if isinstance(rows, pa.Table):
        return rows
    try:
        if isinstance(rows, pd.DataFrame):
            return pa.Table.from_pandas(rows, preserve_index=False)
        if isinstance(rows, (list, tuple)):
            # 列 = 所有行 key 的并集（按首次出现顺序），缺失字段为 null
            columns = list(dict.fromkeys(k for r in rows for k in r))
            return pa.Table.from_pydict({c: [r.get(c) for r in rows] for c in columns})
    except (pa.ArrowInvalid, pa.ArrowTypeError) as err:
        raise InconsistentKind(f"rows mix incompatible value representations: {err}") from err
    raise UserInputError(
        f"rows must be a pyarrow.Table, pandas.DataFrame or list of mappings, got {type(rows).__name__}"
    )


def _normalize(
        table: pa.Table,
        location_kind: Optional[str],
        time_kind: Optional[str],
) -> tuple[pa.Table, str, str]:
    """role 列去空 / 统一类型 / 推断或校验 kind，role 列放到最前"""
    for col in KEY_COLUMNS:
        if table[col].null_count:
            raise UserInputError(f"role column {col!r} contains nulls")

    loc_type = table.schema.field(LOCATION).type
    if pa.types.is_dictionary(loc_type):
        table = table.set_column(
            table.schema.get_field_index(LOCATION), LOCATION, pc.cast(table[LOCATION], loc_type.value_type)
        )
        loc_type = loc_type.value_type
    if pa.types.is_large_string(loc_type):
        table = table.set_column(
            table.schema.get_field_index(LOCATION), LOCATION, pc.cast(table[LOCATION], pa.string())
        )
    elif not (pa.types.is_string(loc_type) or pa.types.is_integer(loc_type)):
        raise InconsistentKind(f"location column must be string or integer, got {loc_type}")

    table, time_kind = TimeKind.normalize_columns(table, OBSERVATION_TIME, VERSION, time_kind)

    locations = pc.unique(table[LOCATION]).to_pylist()
    if location_kind is None:
        location_kind = LocationKind.infer(locations)
    else:
        LocationKind.validate(location_kind, locations)

    ordered = list(KEY_COLUMNS) + value_columns(table)
    return table.select(ordered), location_kind, time_kind


def _dedupe(table: pa.Table) -> pa.Table:
    """相同 key 且 value 相同 → 合并；value 不同 → DuplicateKey"""
    dup_key = same_as_previous(table, KEY_COLUMNS)
    if not pc.any(dup_key).as_py():
        return table

    same_val = same_as_previous(table, value_columns(table))
    conflict = pc.and_(dup_key, pc.invert(same_val))
    if pc.any(conflict).as_py():
        keys = table.filter(conflict).select(list(KEY_COLUMNS)).to_pylist()
        raise DuplicateKey([tuple(k.values()) for k in keys])

    logs.debug(f"[KeyedRecordSet] dropped {pc.sum(dup_key).as_py()} exact duplicate rows")
    return table.filter(pc.invert(dup_key))


def _align_schema(table: pa.Table, schema: pa.Schema) -> pa.Table:
    if set(table.column_names) != set(schema.names):
        raise UserInputError(
            f"appended rows have columns {sorted(table.column_names)}, "
            f"store has {sorted(schema.names)}"
        )
    table = table.select(schema.names)
    try:
        return table.cast(schema)
    except (pa.ArrowInvalid, pa.ArrowNotImplementedError, pa.ArrowTypeError) as err:
        raise InconsistentKind(f"appended rows do not match store schema: {err}") from err


def _max_version(table: pa.Table) -> Any:
    if table.num_rows == 0:
        return None
    return pc.max(table[VERSION]).as_py()


def _resolve_versions_end(versions_end: Any, max_version: Any, time_kind: str) -> Any:
    if versions_end is None:
        return max_version
    TimeKind.check_scalar(time_kind, versions_end, what="versions_end")
    if max_version is not None and versions_end < max_version:
        raise UserInputError(
            f"versions_end={versions_end!r} is before the latest observed version {max_version!r}"
        )
    return versions_end


def _check_clobberable(start: Any, versions_end: Any, time_kind: str) -> Any:
    if start is None:
        return None
    TimeKind.check_scalar(time_kind, start, what="clobberable_versions_start")
    if versions_end is not None and start > versions_end:
        raise UserInputError(
            f"clobberable_versions_start={start!r} is after versions_end={versions_end!r}"
        )
    return start

