#!filepath: panelarchive/engines/merge_engine.py
from __future__ import annotations

from typing import Optional

import pyarrow as pa
import pyarrow.compute as pc

from panelarchive import logs
from panelarchive.config.archive_config import MergePolicy
from panelarchive.core.schema import (
    GROUP_COLUMNS,
    KEY_COLUMNS,
    LOCATION,
    group_starts,
    sort_canonical,
)
from panelarchive.engines.base import BaseEngine
from panelarchive.observability.instrumentation import Instrumentation
from panelarchive.store.record_set import KeyedRecordSet
from panelarchive.utils.errors import (
    ColumnCollision,
    InconsistentKind,
    UnresolvableMerge,
    UserInputError,
)

_ROW_A = "__row_a"
_ROW_B = "__row_b"


class MergeEngine(BaseEngine):
    """
    MergeEngine

    merge(A, B, policy) → 新 store：
      - key 空间 = A ∪ B 的 (location, observation_time)
      - version 轴 = A、B 各自 change-point 的并集（按 key 计算）
      - 每个 change-point v：A 侧字段 = A 在 v 时的 LOCF 值，B 侧同理
      - 某一侧在该 key 首次出现之前 → 该侧字段为 null（尚未观测）

    policy 只作用于"某一侧 versions_end 落后于另一侧"的区间
    (lagging.versions_end, leading.versions_end]：
      - locf     : 视为期间没有变化，继续沿用最后值
      - na       : 在 lagging.versions_end 之后第一个版本写入全空标记
      - forbid   : UnresolvableMerge
      - truncate : 把领先的一侧截断到 lagging.versions_end

    同一 version 两侧同时更新：结果行同时取两侧在该 version 的值，与输入顺序无关。
    输入永远不被修改。
    """

    def execute(
            self,
            a: KeyedRecordSet,
            b: KeyedRecordSet,
            policy: MergePolicy | str = MergePolicy.LOCF,
            prefixes: Optional[tuple[str, str]] = None,
            *,
            compact: bool = False,
    ) -> KeyedRecordSet:
        policy = _resolve_policy(policy)
        self._check_compatible(a, b)

        a_table, b_table = self._apply_prefixes(a, b, prefixes)

        with self.inst.timer(f"{self.name}.sync"):
            a, b, a_table, b_table = self._sync_versions_end(a, b, a_table, b_table, policy)

        with self.inst.timer(f"{self.name}.join"):
            merged = self._join_locf(a_table, b_table)

        versions_end = _max_or_none(a.versions_end, b.versions_end)
        clobber = _min_or_none(a.clobberable_versions_start, b.clobberable_versions_start)

        result = KeyedRecordSet(
            table=merged,
            location_kind=a.location_kind,
            time_kind=a.time_kind,
            versions_end=versions_end,
            clobberable_versions_start=clobber,
        )

        self.inst.metrics.record("merge.rows", merged.num_rows)
        logs.info(
            f"[{self.name}] policy={policy.value} rows A={a_table.num_rows} "
            f"B={b_table.num_rows} -> {merged.num_rows} versions_end={versions_end!r}"
        )

        if compact:
            return result.compact()
        return result

    # --------------------------------------------------
    # validation
    # --------------------------------------------------
    def _check_compatible(self, a: KeyedRecordSet, b: KeyedRecordSet) -> None:
        if a.time_kind != b.time_kind or a.time_type != b.time_type:
            raise InconsistentKind(
                f"cannot merge time_kind={a.time_kind!r} ({a.time_type}) "
                f"with time_kind={b.time_kind!r} ({b.time_type})"
            )
        if a.location_kind != b.location_kind:
            raise InconsistentKind(
                f"cannot merge location_kind={a.location_kind!r} with {b.location_kind!r}"
            )
        a_loc = a.table.schema.field(LOCATION).type
        b_loc = b.table.schema.field(LOCATION).type
        if a_loc != b_loc:
            raise InconsistentKind(f"cannot merge location type {a_loc} with {b_loc}")

    def _apply_prefixes(
            self,
            a: KeyedRecordSet,
            b: KeyedRecordSet,
            prefixes: Optional[tuple[str, str]],
    ) -> tuple[pa.Table, pa.Table]:
        a_table, b_table = a.table, b.table

        if prefixes is not None:
            if len(prefixes) != 2:
                raise UserInputError(f"prefixes must be a pair, got {prefixes!r}")
            a_table = _prefix_values(a_table, prefixes[0])
            b_table = _prefix_values(b_table, prefixes[1])

        a_vals = set(a_table.column_names) - set(KEY_COLUMNS)
        b_vals = set(b_table.column_names) - set(KEY_COLUMNS)
        clash = a_vals & b_vals
        if clash:
            raise ColumnCollision(sorted(clash))
        return a_table, b_table

    # --------------------------------------------------
    # versions_end 同步
    # --------------------------------------------------
    def _sync_versions_end(self, a, b, a_table, b_table, policy: MergePolicy):
        ea, eb = a.versions_end, b.versions_end
        if ea is None or eb is None or ea == eb:
            return a, b, a_table, b_table

        lag_is_a = ea < eb
        lagging, leading = (a, b) if lag_is_a else (b, a)
        lag_end, lead_end = lagging.versions_end, leading.versions_end

        if policy == MergePolicy.FORBID:
            raise UnresolvableMerge(
                f"{'A' if lag_is_a else 'B'} is only known through version {lag_end!r} "
                f"but the other store runs through {lead_end!r}; "
                f"versions in ({lag_end!r}, {lead_end!r}] would need filling"
            )

        logs.warning(
            f"[{self.name}] versions_end mismatch A={ea!r} B={eb!r} -> policy={policy.value}"
        )

        if policy == MergePolicy.TRUNCATE:
            leading = leading.truncate_versions_after(lag_end)
        else:
            how = "na" if policy == MergePolicy.NA else "locf"
            lagging = lagging.fill_through_version(lead_end, how=how)

        a, b = (lagging, leading) if lag_is_a else (leading, lagging)

        # 重新套用前缀：schema 与同步前一致，只替换行
        a_table = a.table.rename_columns(a_table.column_names)
        b_table = b.table.rename_columns(b_table.column_names)
        return a, b, a_table, b_table

    # --------------------------------------------------
    # outer join + 组内 LOCF
    # --------------------------------------------------
    def _join_locf(self, a_table: pa.Table, b_table: pa.Table) -> pa.Table:
        keys = list(KEY_COLUMNS)

        a_idx = a_table.select(keys).append_column(
            _ROW_A, pa.array(range(a_table.num_rows), type=pa.int64())
        )
        b_idx = b_table.select(keys).append_column(
            _ROW_B, pa.array(range(b_table.num_rows), type=pa.int64())
        )

        joined = a_idx.join(b_idx, keys=keys, join_type="full outer")
        joined = sort_canonical(joined).combine_chunks()

        starts = group_starts(joined, GROUP_COLUMNS)
        row_a = _ffill_within_groups(joined[_ROW_A], starts)
        row_b = _ffill_within_groups(joined[_ROW_B], starts)

        columns = {k: joined[k] for k in keys}
        for name in a_table.column_names:
            if name not in columns:
                columns[name] = a_table[name].combine_chunks().take(row_a)
        for name in b_table.column_names:
            if name not in columns:
                columns[name] = b_table[name].combine_chunks().take(row_b)

        return pa.table(columns)


def _ffill_within_groups(col: pa.ChunkedArray | pa.Array, starts: pa.Array) -> pa.Array:
    """
    组内 forward-fill，不跨组：

      1. 组首行若为 null，先写入哨兵 -1
      2. 全局 fill_null_forward（哨兵阻断跨组传播）
      3. 哨兵还原为 null
    """
    if isinstance(col, pa.ChunkedArray):
        col = col.combine_chunks()
    if len(col) == 0:
        return col

    sentinel = pa.scalar(-1, type=pa.int64())
    seeded = pc.if_else(pc.and_(starts, pc.is_null(col)), sentinel, col)
    filled = pc.fill_null_forward(seeded)
    return pc.if_else(pc.equal(filled, sentinel), pa.scalar(None, type=pa.int64()), filled)


def _prefix_values(table: pa.Table, prefix: str) -> pa.Table:
    if not prefix:
        return table
    return table.rename_columns(
        [c if c in KEY_COLUMNS else f"{prefix}{c}" for c in table.column_names]
    )


def _resolve_policy(policy: MergePolicy | str) -> MergePolicy:
    try:
        return MergePolicy(policy)
    except ValueError as err:
        raise UserInputError(
            f"unknown merge policy {policy!r}, expected one of {[p.value for p in MergePolicy]}"
        ) from err


def _max_or_none(x, y):
    if x is None:
        return y
    if y is None:
        return x
    return max(x, y)


def _min_or_none(x, y):
    if x is None:
        return y
    if y is None:
        return x
    return min(x, y)


def merge(
        a: KeyedRecordSet,
        b: KeyedRecordSet,
        policy: MergePolicy | str = MergePolicy.LOCF,
        prefixes: Optional[tuple[str, str]] = None,
        *,
        compact: bool = False,
        inst: Instrumentation | None = None,
) -> KeyedRecordSet:
    return MergeEngine(inst=inst).execute(a, b, policy, prefixes, compact=compact)
