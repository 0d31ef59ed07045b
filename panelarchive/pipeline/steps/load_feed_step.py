#!filepath: panelarchive/pipeline/steps/load_feed_step.py
from __future__ import annotations

from pathlib import Path

from panelarchive import logs
from panelarchive.meta.base import BaseMeta
from panelarchive.pipeline.context import ArchiveContext
from panelarchive.pipeline.parallel.executor import ParallelExecutor
from panelarchive.pipeline.parallel.types import ParallelBackend, ParallelKind
from panelarchive.pipeline.step import PipelineStep
from panelarchive.store.archive_io import read_feed
from panelarchive.utils.errors import UserInputError


class _FeedReader:
    def __init__(self, time_kind: str | None) -> None:
        self.time_kind = time_kind

    def __call__(self, path: Path):
        return read_feed(path, time_kind=self.time_kind)


class LoadFeedStep(PipelineStep):
    """
    LoadFeedStep

    Semantics:
      feeds/*.csv|*.parquet -> ctx.tables[feed.stem]

    输出 manifest 记录的上游 feed 与当前完全一致（文件集合 + size）、
    构建参数（ArchiveConfig）相同且输出文件完好时，整个 pipeline 跳过。
    """

    stage = "load_feed"

    def __init__(self, inst=None, *, max_workers: int = 4, smart_skip: bool = True) -> None:
        super().__init__(inst)
        self.max_workers = max_workers
        self.smart_skip = smart_skip

    def _reusable(self, meta: BaseMeta, ctx: ArchiveContext) -> bool:
        if meta.upstream_changed(ctx.feeds):
            return False
        recorded = meta.load()["outputs"].get("build_settings")
        if recorded != ctx.build_settings:
            logs.warning(f"[{self.step_name}] {ctx.name} build settings changed -> rebuild")
            return False
        return True

    def run(self, ctx: ArchiveContext) -> ArchiveContext:
        if not ctx.feeds:
            ctx.abort("no feeds")
            return ctx

        stems = [f.stem for f in ctx.feeds]
        if len(set(stems)) != len(stems):
            raise UserInputError(f"feed names must be unique, got {stems}")

        missing = [str(f) for f in ctx.feeds if not f.exists()]
        if missing:
            raise FileNotFoundError(f"feeds not found: {missing}")

        meta = BaseMeta(meta_dir=ctx.output_dir, name=ctx.name)
        if self.smart_skip and self._reusable(meta, ctx):
            logs.warning(f"[{self.step_name}] {ctx.name} upstream unchanged -> skip")
            ctx.skipped = True
            ctx.output_file = ctx.store_path
            ctx.abort("upstream unchanged")
            return ctx

        with self.timed():
            with self.inst.timer(f"{self.step_name}.read"):
                tables = ParallelExecutor.run(
                    kind=ParallelKind.FEED,
                    items=ctx.feeds,
                    handler=_FeedReader(ctx.archive.time_kind),
                    max_workers=self.max_workers,
                    backend=ParallelBackend.THREAD,
                )

        ctx.tables = dict(zip(stems, tables))
        logs.info(
            f"[{self.step_name}] loaded {len(tables)} feeds "
            f"rows={sum(t.num_rows for t in tables)}"
        )
        return ctx
