#!filepath: panelarchive/pipeline/steps/build_store_step.py
from __future__ import annotations

from panelarchive import logs
from panelarchive.pipeline.context import ArchiveContext
from panelarchive.pipeline.step import PipelineStep
from panelarchive.store.record_set import KeyedRecordSet


class BuildStoreStep(PipelineStep):
    """
    ctx.tables[name] -> ctx.stores[name]

    build 阶段的结构性错误（DuplicateKey / InconsistentKind / MissingColumns）直接抛出。
    """

    stage = "build"

    @logs.catch()
    def run(self, ctx: ArchiveContext) -> ArchiveContext:
        with self.timed():
            for name, table in ctx.tables.items():
                with self.inst.timer(f"{self.step_name}.{name}"):
                    ctx.stores[name] = KeyedRecordSet.build(
                        table,
                        location_kind=ctx.archive.location_kind,
                        time_kind=ctx.archive.time_kind,
                    )

        # 原始表不再需要
        ctx.tables = {}
        logs.info(f"[{self.step_name}] built {len(ctx.stores)} stores")
        return ctx
