# panelarchive/pipeline/parallel/executor.py
from __future__ import annotations

import os
from concurrent.futures import (
    FIRST_EXCEPTION,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from panelarchive import logs
from panelarchive.pipeline.parallel.manifest import ParallelManifest
from panelarchive.pipeline.parallel.types import ParallelBackend, ParallelKind


@dataclass(frozen=True)
class ItemFailure:
    """fail_fast=False 时，失败 item 在结果列表中的占位。"""

    item: Any
    error: BaseException


class ParallelExecutor:
    """
    ParallelExecutor

    契约：
    - 结果顺序 == 输入顺序（与完成顺序无关）
    - workers == 1 时顺序执行（便于调试 / 断言）
    - manifest 可选：已 done 的 item 跳过（结果为 None），失败写入 mark_failed
    - fail_fast=True：第一个失败取消剩余任务并原样抛出
    - fail_fast=False：失败 item 的结果为 ItemFailure，其余继续
    - handler 只读共享数据，不允许写共享状态
    """

    @staticmethod
    def run(
            *,
            kind: ParallelKind,
            items: Iterable[Any],
            handler: Callable[[Any], Any],
            max_workers: int | None = None,
            manifest: ParallelManifest | None = None,
            fail_fast: bool = True,
            backend: ParallelBackend = ParallelBackend.PROCESS,
            key: Callable[[Any], str] = str,
    ) -> list[Any]:
        items = list(items)
        if not items:
            logs.info(f"[ParallelExecutor] kind={kind.value} no items to process")
            return []

        results: list[Any] = [None] * len(items)
        pending: list[int] = []
        for i, item in enumerate(items):
            if manifest is not None and manifest.is_done(key(item)):
                logs.debug(f"[ParallelExecutor] {key(item)} already done -> skip")
                continue
            pending.append(i)

        logs.info(
            f"[ParallelExecutor] start kind={kind.value} "
            f"total={len(items)} pending={len(pending)}"
        )

        workers = ParallelExecutor._resolve_workers(pending, max_workers)

        if workers <= 1:
            ParallelExecutor._run_sequential(
                items, pending, handler, results, manifest, fail_fast, key
            )
        else:
            ParallelExecutor._run_parallel(
                items, pending, handler, results, manifest, fail_fast, key,
                workers, backend,
            )
        return results

    # ---------------- internal ----------------

    @staticmethod
    def _resolve_workers(items: list[Any], max_workers: int | None) -> int:
        cpu = os.cpu_count() or 1
        if not items:
            return 1
        if max_workers is None:
            return min(cpu, len(items))
        return max(1, min(max_workers, len(items)))

    @staticmethod
    def _record_success(manifest, name: str) -> None:
        if manifest is not None:
            manifest.mark_done(name)

    @staticmethod
    def _record_failure(manifest, name: str, err: BaseException) -> None:
        logs.warning(f"[ParallelExecutor] item={name} failed: {type(err).__name__}: {err}")
        if manifest is not None:
            manifest.mark_failed(name, f"{type(err).__name__}: {err}")

    @staticmethod
    def _run_sequential(items, pending, handler, results, manifest, fail_fast, key) -> None:
        for i in pending:
            item = items[i]
            try:
                results[i] = handler(item)
            except Exception as err:
                ParallelExecutor._record_failure(manifest, key(item), err)
                if fail_fast:
                    raise
                results[i] = ItemFailure(item=item, error=err)
                continue
            ParallelExecutor._record_success(manifest, key(item))

    @staticmethod
    def _run_parallel(
            items, pending, handler, results, manifest, fail_fast, key,
            workers: int, backend: ParallelBackend,
    ) -> None:
        logs.info(
            f"[ParallelExecutor] run parallel | backend={backend.value} workers={workers}"
        )

        pool_cls = ProcessPoolExecutor if backend == ParallelBackend.PROCESS else ThreadPoolExecutor

        with pool_cls(max_workers=workers) as pool:
            futures = {pool.submit(handler, items[i]): i for i in pending}

            if fail_fast:
                done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
                failed = [f for f in done if f.exception() is not None]
                if failed:
                    for f in not_done:
                        f.cancel()
                    first = min(failed, key=lambda f: futures[f])
                    for f in failed:
                        ParallelExecutor._record_failure(
                            manifest, key(items[futures[f]]), f.exception()
                        )
                    raise first.exception()
                # 没有失败：等待剩余全部完成
                wait(not_done)

            for fut, i in futures.items():
                item = items[i]
                err = fut.exception()
                if err is not None:
                    ParallelExecutor._record_failure(manifest, key(item), err)
                    if fail_fast:
                        raise err
                    results[i] = ItemFailure(item=item, error=err)
                    continue
                results[i] = fut.result()
                ParallelExecutor._record_success(manifest, key(item))
