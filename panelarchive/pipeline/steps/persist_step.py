#!filepath: panelarchive/pipeline/steps/persist_step.py
from __future__ import annotations

from panelarchive import logs
from panelarchive.pipeline.context import ArchiveContext
from panelarchive.pipeline.step import PipelineStep
from panelarchive.store.archive_io import save_store


class PersistStep(PipelineStep):
    """ctx.merged -> <output_dir>/<name>.parquet + <name>.manifest.json"""

    stage = "persist"

    @logs.catch()
    def run(self, ctx: ArchiveContext) -> ArchiveContext:
        if ctx.merged is None:
            logs.warning(f"[{self.step_name}] nothing to persist")
            return ctx

        with self.timed():
            with self.inst.timer(f"{self.step_name}.save"):
                ctx.output_file = save_store(
                    ctx.merged,
                    ctx.store_path,
                    compression=ctx.compression,
                    upstream=ctx.feeds,
                    attrs={"build_settings": ctx.build_settings},
                )
        return ctx
