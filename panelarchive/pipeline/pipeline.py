#!filepath: panelarchive/pipeline/pipeline.py
from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from panelarchive import logs
from panelarchive.config.app_config import AppConfig
from panelarchive.observability.instrumentation import Instrumentation
from panelarchive.pipeline.context import ArchiveContext
from panelarchive.pipeline.step import PipelineStep
from panelarchive.pipeline.steps.build_store_step import BuildStoreStep
from panelarchive.pipeline.steps.compact_step import CompactStep
from panelarchive.pipeline.steps.load_feed_step import LoadFeedStep
from panelarchive.pipeline.steps.merge_step import MergeStep
from panelarchive.pipeline.steps.persist_step import PersistStep
from panelarchive.utils.filesystem import FileSystem


class ArchivePipeline:
    """
    ArchivePipeline = 调度器

    设计铁律：
    - Pipeline 负责 orchestration（顺序 / 上下文）
    - Pipeline 不做 Step 级计时，Step 自己定义时间边界（PipelineStep.timed）
    - 任一 Step 设置 ctx.abort_pipeline 后，后续 Step 不再执行
    """

    def __init__(self, steps: list[PipelineStep], inst: Instrumentation | None = None):
        self.steps = steps
        self.inst = inst if inst is not None else Instrumentation()

    @classmethod
    def default(
            cls,
            cfg: Optional[AppConfig] = None,
            inst: Instrumentation | None = None,
    ) -> "ArchivePipeline":
        """LoadFeed → BuildStore → Compact → Merge → Persist"""
        cfg = cfg or AppConfig()
        inst = inst if inst is not None else Instrumentation()
        steps: list[PipelineStep] = [
            LoadFeedStep(inst=inst),
            BuildStoreStep(inst=inst),
        ]
        if cfg.archive.compact_on_build:
            steps.append(CompactStep(inst=inst))
        steps += [MergeStep(inst=inst), PersistStep(inst=inst)]
        return cls(steps, inst=inst)

    def run(
            self,
            name: str,
            feeds: Sequence[str | Path],
            output_dir: str | Path | None = None,
            cfg: Optional[AppConfig] = None,
    ) -> ArchiveContext:
        cfg = cfg or AppConfig()
        output_dir = Path(output_dir or cfg.storage.root)
        FileSystem.ensure_dir(output_dir)
        stale = FileSystem.clean_temp_files(output_dir)
        if stale:
            logs.warning(f"[Pipeline] removed {stale} stale temp file(s) in {output_dir}")

        ctx = ArchiveContext(
            name=name,
            feeds=[Path(f) for f in feeds],
            output_dir=output_dir,
            archive=cfg.archive,
            compression=cfg.storage.compression,
        )

        logs.info(f"[Pipeline] ====== START {name} feeds={len(ctx.feeds)} ======")
        self.inst.context.set("store", name)

        for step in self.steps:
            if ctx.abort_pipeline:
                logs.warning(f"[Pipeline] aborted before {step.step_name}: {ctx.abort_reason}")
                break
            self.inst.context.set("step", step.step_name)
            ctx = step.run(ctx)

        self.inst.generate_timeline_report(name)
        logs.info(f"[Pipeline] ====== DONE {name} ======")
        return ctx
