#!filepath: panelarchive/pipeline/steps/compact_step.py
from __future__ import annotations

from panelarchive.engines.compact_engine import CompactEngine
from panelarchive.pipeline.context import ArchiveContext
from panelarchive.pipeline.step import PipelineStep


class CompactStep(PipelineStep):
    """每个 store 去掉冗余 revision（相邻版本值相同）"""

    stage = "compact"

    def __init__(self, inst=None) -> None:
        super().__init__(inst)
        self.engine = CompactEngine(inst=self.inst)

    def run(self, ctx: ArchiveContext) -> ArchiveContext:
        with self.timed():
            ctx.stores = {name: self.engine.execute(store) for name, store in ctx.stores.items()}
        return ctx
