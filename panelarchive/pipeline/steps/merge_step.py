#!filepath: panelarchive/pipeline/steps/merge_step.py
from __future__ import annotations

from panelarchive import logs
from panelarchive.engines.merge_engine import MergeEngine
from panelarchive.pipeline.context import ArchiveContext
from panelarchive.pipeline.step import PipelineStep


class MergeStep(PipelineStep):
    """
    MergeStep

    Semantics:
      ctx.stores（按 feed 顺序）依次折叠 → ctx.merged

    prefix_values=True 且有多个 store 时，每个 store 的 value 列加上 "<feed>_" 前缀，
    避免 ColumnCollision。
    """

    stage = "merge"

    def __init__(self, inst=None, *, prefix_values: bool = True) -> None:
        super().__init__(inst)
        self.prefix_values = prefix_values
        self.engine = MergeEngine(inst=self.inst)

    def run(self, ctx: ArchiveContext) -> ArchiveContext:
        if not ctx.stores:
            ctx.abort("no stores to merge")
            return ctx

        items = list(ctx.stores.items())
        first_name, merged = items[0]

        if len(items) == 1:
            ctx.merged = merged
            return ctx

        with self.timed():
            for i, (name, store) in enumerate(items[1:]):
                prefixes = None
                if self.prefix_values:
                    prefixes = (f"{first_name}_" if i == 0 else "", f"{name}_")
                merged = self.engine.execute(merged, store, ctx.merge_policy, prefixes)

        ctx.merged = merged
        logs.info(
            f"[{self.step_name}] merged {len(items)} stores policy={ctx.merge_policy.value} "
            f"rows={merged.num_rows}"
        )
        return ctx
