#!filepath: panelarchive/engines/compact_engine.py
from __future__ import annotations

import pyarrow.compute as pc

from panelarchive import logs
from panelarchive.core.schema import GROUP_COLUMNS, group_starts, same_as_previous
from panelarchive.engines.base import BaseEngine
from panelarchive.observability.instrumentation import Instrumentation
from panelarchive.store.record_set import KeyedRecordSet


class CompactEngine(BaseEngine):
    """
    CompactEngine（Compactor）

    对每个 (location, observation_time) 组按 version 升序：
      - 组内第一行永远保留
      - value tuple 与前一个版本完全相同的行删除（LOCF 下它不携带信息）

    性质：
      - compact(compact(s)) == compact(s)
      - 任意 cutoff 下 as_of 结果不变
    """

    def execute(self, store: KeyedRecordSet) -> KeyedRecordSet:
        table = store.table
        if table.num_rows == 0:
            return store.clone()

        with self.inst.timer(self.name):
            keep = pc.or_(
                group_starts(table, GROUP_COLUMNS),
                pc.invert(same_as_previous(table, store.value_columns)),
            )
            compacted = table.filter(keep)

        dropped = table.num_rows - compacted.num_rows
        self.inst.metrics.record("compact.dropped_rows", dropped)
        logs.info(
            f"[{self.name}] rows {table.num_rows} -> {compacted.num_rows} (dropped={dropped})"
        )
        return store._derive(compacted)


def compact(store: KeyedRecordSet, *, inst: Instrumentation | None = None) -> KeyedRecordSet:
    return CompactEngine(inst=inst).execute(store)
