#!filepath: panelarchive/engines/snapshot_engine.py
from __future__ import annotations

from typing import Any

import pyarrow as pa
import pyarrow.compute as pc

from panelarchive import logs
from panelarchive.core.kinds import TimeKind
from panelarchive.core.schema import (
    GROUP_COLUMNS,
    META_AS_OF_VERSION,
    META_LOCATION_KIND,
    META_TIME_KIND,
    VERSION,
    group_ends,
    location_slices,
)
from panelarchive.engines.base import BaseEngine
from panelarchive.observability.instrumentation import Instrumentation
from panelarchive.pipeline.parallel.executor import ParallelExecutor
from panelarchive.pipeline.parallel.types import ParallelBackend, ParallelKind
from panelarchive.store.record_set import KeyedRecordSet
from panelarchive.store.snapshot import Snapshot
from panelarchive.utils.errors import FutureCutoffAdvisory, UserInputError


def latest_as_of(table: pa.Table, cutoff: pa.Scalar) -> pa.Table:
    """
    纯函数：canonical 子表 → 每个 (location, observation_time) 在 cutoff 时的最新行

    version > cutoff 的行不可见；结果仍带 version 列。
    """
    visible = table.filter(pc.less_equal(table[VERSION], cutoff))
    if visible.num_rows == 0:
        return visible
    return visible.filter(group_ends(visible, GROUP_COLUMNS))


def _latest_partition(args: tuple[pa.Table, pa.Scalar]) -> pa.Table:
    table, cutoff = args
    return latest_as_of(table, cutoff)


class SnapshotEngine(BaseEngine):
    """
    SnapshotEngine

    as_of(store, cutoff)：
      - 每个 (location, observation_time) 取 version <= cutoff 的最大 version 行
      - 没有可见行的组不输出
      - 结果按 (location, observation_time) 排序，去掉 version 列
      - cutoff 超出 versions_end / 落入 clobberable 区间 → advisory（不阻断）

    max_workers > 1 时按 location 分区并行；各分区只读 store 的 0-copy slice。
    """

    def __init__(
            self,
            inst: Instrumentation | None = None,
            *,
            max_workers: int = 1,
            backend: ParallelBackend = ParallelBackend.THREAD,
    ):
        super().__init__(inst)
        self.max_workers = max_workers
        self.backend = backend

    # --------------------------------------------------
    def execute(self, store: KeyedRecordSet, cutoff: Any) -> Snapshot:
        TimeKind.check_scalar(store.time_kind, cutoff, what="cutoff")

        table = store.table
        cutoff_scalar = TimeKind.scalar(cutoff, store.time_type)

        with self.inst.timer(self.name):
            if self.max_workers > 1 and table.num_rows:
                latest = self._execute_partitioned(table, cutoff_scalar)
            else:
                latest = latest_as_of(table, cutoff_scalar)

        advisories = self._advisories(store, cutoff)
        return self._to_snapshot(store, latest.drop([VERSION]), cutoff, advisories)

    def latest(self, store: KeyedRecordSet) -> Snapshot:
        """
        "latest" 快捷方式：在调用时把 cutoff 解析为具体的 versions_end，
        并附带 latest advisory（之后仍可能有新的 revision）。
        """
        if store.versions_end is None:
            raise UserInputError("cannot resolve latest version of an empty store")

        cutoff = store.versions_end
        snapshot = self.execute(store, cutoff)
        advisory = FutureCutoffAdvisory(cutoff=cutoff, latest_version=cutoff, reason="latest")
        logs.info(f"[{self.name}] latest resolved to version={cutoff!r}")
        return Snapshot(
            table=snapshot.table,
            as_of_version=snapshot.as_of_version,
            location_kind=snapshot.location_kind,
            time_kind=snapshot.time_kind,
            advisories=snapshot.advisories + (advisory,),
        )

    # --------------------------------------------------
    # internal
    # --------------------------------------------------
    def _execute_partitioned(self, table: pa.Table, cutoff: pa.Scalar) -> pa.Table:
        index = location_slices(table)
        parts = [(table.slice(start, length), cutoff) for start, length in index.values()]

        results = ParallelExecutor.run(
            kind=ParallelKind.KEY_GROUP,
            items=parts,
            handler=_latest_partition,
            max_workers=self.max_workers,
            backend=self.backend,
            key=lambda part: str(part[0].slice(0, 1).column(0).to_pylist()),
        )
        # location_slices 按 location 升序，结果顺序 == 输入顺序
        return pa.concat_tables(results) if results else table.slice(0, 0)

    def _advisories(self, store: KeyedRecordSet, cutoff: Any) -> tuple[FutureCutoffAdvisory, ...]:
        out = []
        end = store.versions_end
        if end is not None and cutoff > end:
            out.append(FutureCutoffAdvisory(cutoff=cutoff, latest_version=end))

        clobber = store.clobberable_versions_start
        if clobber is not None and cutoff >= clobber:
            out.append(
                FutureCutoffAdvisory(cutoff=cutoff, latest_version=clobber, reason="clobberable")
            )

        for adv in out:
            logs.warning(f"[{self.name}] {adv.message}")
        return tuple(out)

    def _to_snapshot(
            self,
            store: KeyedRecordSet,
            table: pa.Table,
            cutoff: Any,
            advisories: tuple[FutureCutoffAdvisory, ...],
    ) -> Snapshot:
        table = table.replace_schema_metadata({
            META_AS_OF_VERSION: str(cutoff).encode("utf-8"),
            META_LOCATION_KIND: store.location_kind.encode("utf-8"),
            META_TIME_KIND: store.time_kind.encode("utf-8"),
        })
        logs.debug(f"[{self.name}] as_of={cutoff!r} rows={table.num_rows}")
        return Snapshot(
            table=table,
            as_of_version=cutoff,
            location_kind=store.location_kind,
            time_kind=store.time_kind,
            advisories=advisories,
        )


def as_of(
        store: KeyedRecordSet,
        cutoff: Any,
        *,
        inst: Instrumentation | None = None,
        max_workers: int = 1,
) -> Snapshot:
    return SnapshotEngine(inst=inst, max_workers=max_workers).execute(store, cutoff)


def as_of_latest(store: KeyedRecordSet, *, inst: Instrumentation | None = None) -> Snapshot:
    return SnapshotEngine(inst=inst).latest(store)
