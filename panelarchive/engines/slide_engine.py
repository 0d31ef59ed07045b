#!filepath: panelarchive/engines/slide_engine.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Sequence

import pandas as pd
import pyarrow as pa
import pyarrow.compute as pc

from panelarchive import logs
from panelarchive.config.slide_config import SlideConfig
from panelarchive.core.kinds import TimeKind
from panelarchive.core.schema import (
    LOCATION,
    OBSERVATION_TIME,
    location_slices,
    require_columns,
    sort_canonical,
)
from panelarchive.engines.base import BaseEngine
from panelarchive.engines.computations import as_computation
from panelarchive.engines.snapshot_engine import SnapshotEngine
from panelarchive.observability.instrumentation import Instrumentation
from panelarchive.pipeline.parallel.executor import ItemFailure, ParallelExecutor
from panelarchive.pipeline.parallel.types import ParallelBackend, ParallelKind
from panelarchive.store.record_set import KeyedRecordSet
from panelarchive.store.snapshot import Snapshot
from panelarchive.utils.errors import (
    FutureCutoffAdvisory,
    PerCellComputationError,
    UserInputError,
)


class SlideMode(str, Enum):
    VALUE = "value"
    ARCHIVE = "archive"


# ======================================================================
# result types
# ======================================================================
@dataclass(frozen=True)
class SlideCell:
    """一个 (ref_point, location) 的计算结果；error 非空表示该格失败"""

    ref_point: Any
    group_key: Any
    value: Any = None
    error: Optional[PerCellComputationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SlideBatch:
    """一个 ref_point 的全部 cell（iter_slide 的产出单位）"""

    ref_point: Any
    cells: tuple[SlideCell, ...]
    advisories: tuple[FutureCutoffAdvisory, ...] = ()


@dataclass
class SlideResult:
    """
    SlideResult

    - cells 按 (ref_point, group_key) 升序
    - cancelled=True 时，completed_ref_points 之内的结果依然完整有效
    """

    mode: SlideMode
    cells: list[SlideCell] = field(default_factory=list)
    advisories: list[tuple[Any, FutureCutoffAdvisory]] = field(default_factory=list)
    completed_ref_points: list[Any] = field(default_factory=list)
    cancelled: bool = False

    def add(self, batch: SlideBatch) -> None:
        self.cells.extend(batch.cells)
        self.advisories.extend((batch.ref_point, adv) for adv in batch.advisories)
        self.completed_ref_points.append(batch.ref_point)

    def __iter__(self) -> Iterator[SlideCell]:
        return iter(self.cells)

    def __len__(self) -> int:
        return len(self.cells)

    def values(self) -> list[tuple[Any, Any, Any]]:
        """成功的 (ref_point, group_key, value)"""
        return [(c.ref_point, c.group_key, c.value) for c in self.cells if c.ok]

    def errors(self) -> list[SlideCell]:
        return [c for c in self.cells if not c.ok]

    def get(self, ref_point: Any, group_key: Any) -> Optional[SlideCell]:
        for c in self.cells:
            if c.ref_point == ref_point and c.group_key == group_key:
                return c
        return None

    def to_pandas(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "ref_point": [c.ref_point for c in self.cells],
                LOCATION: [c.group_key for c in self.cells],
                "value": [c.value for c in self.cells],
                "error": [None if c.ok else str(c.error) for c in self.cells],
            }
        )


class CancelToken:
    """线程安全的取消标记；slide 在两个 ref_point 之间检查"""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ======================================================================
# per-cell worker（可 pickle，process backend 可用）
# ======================================================================
class _CellTask:
    def __init__(self, computation: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        self.computation = computation
        self.args = args
        self.kwargs = kwargs

    def __call__(self, item: tuple[Any, Any, Any]) -> Any:
        ref_point, group_key, window = item
        try:
            return self.computation(window, group_key, ref_point, *self.args, **self.kwargs)
        except Exception as err:
            raise PerCellComputationError(ref_point, group_key, err) from err


# ======================================================================
# engine
# ======================================================================
class SlideEngine(BaseEngine):
    """
    SlideEngine

    两种模式共用一个接口：

      value   : 给定一张固定表（Snapshot / Table / DataFrame），不做任何版本过滤；
                窗口 [ref - before, ref + after]
      archive : 每个 ref_point 先做 as_of(store, ref_point)，只看当时可知的行；
                窗口 [ref - before, ref]（只允许向后看）

    设计铁律：
      1. ref_points 严格递增，按顺序处理
      2. archive 模式下 ref_point 的计算永远看不到 version > ref_point 的行
      3. 单格失败只影响该格（fail_fast=True 时立即抛出）
      4. 结果按 (ref_point, group_key) 升序，与并行完成顺序无关
      5. 取消只发生在两个 ref_point 之间，已完成的 batch 保持有效
    """

    def __init__(
            self,
            inst: Instrumentation | None = None,
            *,
            max_workers: int = 1,
            backend: ParallelBackend = ParallelBackend.THREAD,
            fail_fast: bool = False,
    ):
        super().__init__(inst)
        self.max_workers = max_workers
        self.backend = backend
        self.fail_fast = fail_fast

    @classmethod
    def from_config(cls, cfg: SlideConfig, inst: Instrumentation | None = None) -> "SlideEngine":
        return cls(inst, max_workers=cfg.max_workers, backend=cfg.backend, fail_fast=cfg.fail_fast)

    # --------------------------------------------------
    # public
    # --------------------------------------------------
    def execute(
            self,
            source: Any,
            computation: Any,
            *,
            window_before: Any = 0,
            window_after: Any = 0,
            ref_points: Optional[Sequence[Any]] = None,
            mode: SlideMode | str | None = None,
            fail_fast: Optional[bool] = None,
            all_versions: bool = False,
            cancel: Optional[CancelToken] = None,
            args: tuple = (),
            kwargs: Optional[dict] = None,
    ) -> SlideResult:
        mode = _resolve_mode(source, mode)
        result = SlideResult(mode=mode)

        batches = self.iter_batches(
            source,
            computation,
            window_before=window_before,
            window_after=window_after,
            ref_points=ref_points,
            mode=mode,
            fail_fast=fail_fast,
            all_versions=all_versions,
            args=args,
            kwargs=kwargs,
        )

        # 每个 ref_point 开算之前检查取消，已完成的 batch 保持有效
        while True:
            if cancel is not None and cancel.cancelled:
                result.cancelled = True
                logs.warning(
                    f"[{self.name}] cancelled after {len(result.completed_ref_points)} ref points"
                )
                break
            batch = next(batches, None)
            if batch is None:
                break
            result.add(batch)
        batches.close()

        errors = result.errors()
        if errors:
            logs.warning(f"[{self.name}] {len(errors)} cell(s) failed")
        self.inst.metrics.record("slide.cells", len(result.cells))
        return result

    def iter_batches(
            self,
            source: Any,
            computation: Any,
            *,
            window_before: Any = 0,
            window_after: Any = 0,
            ref_points: Optional[Sequence[Any]] = None,
            mode: SlideMode | str | None = None,
            fail_fast: Optional[bool] = None,
            all_versions: bool = False,
            args: tuple = (),
            kwargs: Optional[dict] = None,
    ) -> Iterator[SlideBatch]:
        """
        逐个 ref_point 产出 SlideBatch；调用方可以随时停止迭代。
        """
        mode = _resolve_mode(source, mode)
        fail_fast = self.fail_fast if fail_fast is None else fail_fast
        task = _CellTask(as_computation(computation), tuple(args), dict(kwargs or {}))

        if mode == SlideMode.ARCHIVE:
            return self._iter_archive(
                source, task, window_before, window_after, ref_points, fail_fast, all_versions
            )
        if all_versions:
            raise UserInputError("all_versions=True is only valid in archive mode")
        return self._iter_value(source, task, window_before, window_after, ref_points, fail_fast)

    # --------------------------------------------------
    # value mode
    # --------------------------------------------------
    def _iter_value(self, source, task, before, after, ref_points, fail_fast) -> Iterator[SlideBatch]:
        table, time_kind = _value_table(source)
        TimeKind.check_width(time_kind, before, what="window_before")
        TimeKind.check_width(time_kind, after, what="window_after")

        if ref_points is None:
            ref_points = sorted(pc.unique(table[OBSERVATION_TIME]).to_pylist()) if table.num_rows else []
        ref_points = _check_ref_points(ref_points, time_kind)
        time_type = table.schema.field(OBSERVATION_TIME).type

        return self._run_batches(
            ref_points,
            fail_fast,
            task,
            window_for=lambda ref: (
                _window(
                    table,
                    time_type,
                    TimeKind.unshift(time_kind, ref, before),
                    TimeKind.shift(time_kind, ref, after),
                ),
                (),
            ),
            split=_split_table,
            label="value",
        )

    # --------------------------------------------------
    # archive mode
    # --------------------------------------------------
    def _iter_archive(
            self, store, task, before, after, ref_points, fail_fast, all_versions
    ) -> Iterator[SlideBatch]:
        if not isinstance(store, KeyedRecordSet):
            raise UserInputError(
                f"archive mode needs a KeyedRecordSet, got {type(store).__name__}"
            )
        time_kind = store.time_kind
        TimeKind.check_width(time_kind, before, what="window_before")
        if not _is_zero_width(after):
            raise UserInputError(
                "window_after must be 0 in archive mode (forward windows need unreleased versions)"
            )

        if ref_points is None:
            ref_points = store.versions_observed()
        ref_points = _check_ref_points(ref_points, time_kind)

        snapshots = SnapshotEngine(inst=None)
        time_type = store.time_type

        def window_for(ref):
            lo = TimeKind.unshift(time_kind, ref, before)
            if all_versions:
                visible, advisories = _versions_through(store, ref, snapshots)
                table = _window(visible.table, time_type, lo, ref)
                return visible._derive(table), advisories

            snap = snapshots.execute(store, ref)
            return _window(snap.table, time_type, lo, ref), snap.advisories

        return self._run_batches(
            ref_points,
            fail_fast,
            task,
            window_for=window_for,
            split=_split_store if all_versions else _split_table,
            label="archive",
        )

    # --------------------------------------------------
    # shared batch loop
    # --------------------------------------------------
    def _run_batches(self, ref_points, fail_fast, task, *, window_for, split, label) -> Iterator[SlideBatch]:
        total = len(ref_points)
        logs.info(
            f"[{self.name}] mode={label} ref_points={total} "
            f"workers={self.max_workers} fail_fast={fail_fast}"
        )
        self.inst.progress.start(f"{self.name}.{label}", total, "ref_points")

        for n, ref in enumerate(ref_points, start=1):
            self.inst.context.set("ref_point", ref)
            with self.inst.timer(f"{self.name}.{label}"):
                window, advisories = window_for(ref)
                items = [(ref, key, sub) for key, sub in split(window)]
                cells = self._run_cells(items, task, fail_fast)

            self.inst.progress.update(f"{self.name}.{label}", n, total, "ref_points")
            yield SlideBatch(ref_point=ref, cells=tuple(cells), advisories=tuple(advisories))

        self.inst.progress.done(f"{self.name}.{label}")

    def _run_cells(self, items, task: _CellTask, fail_fast: bool) -> list[SlideCell]:
        if not items:
            return []

        results = ParallelExecutor.run(
            kind=ParallelKind.SLIDE_CELL,
            items=items,
            handler=task,
            max_workers=self.max_workers,
            fail_fast=fail_fast,
            backend=self.backend,
            key=lambda item: f"{item[0]}|{item[1]}",
        )

        cells = []
        for (ref, key, _), res in zip(items, results):
            if isinstance(res, ItemFailure):
                err = res.error
                if not isinstance(err, PerCellComputationError):
                    err = PerCellComputationError(ref, key, err)
                cells.append(SlideCell(ref_point=ref, group_key=key, error=err))
            else:
                cells.append(SlideCell(ref_point=ref, group_key=key, value=res))

        failed = sum(1 for c in cells if not c.ok)
        if failed:
            self.inst.metrics.incr("slide.cell_errors", failed)
        return cells


# ======================================================================
# helpers
# ======================================================================
def _resolve_mode(source: Any, mode: SlideMode | str | None) -> SlideMode:
    if mode is None:
        return SlideMode.ARCHIVE if isinstance(source, KeyedRecordSet) else SlideMode.VALUE
    try:
        return SlideMode(mode)
    except ValueError as err:
        raise UserInputError(f"unknown slide mode {mode!r}, expected 'value' or 'archive'") from err


def _value_table(source: Any) -> tuple[pa.Table, str]:
    if isinstance(source, KeyedRecordSet):
        raise UserInputError(
            "value mode needs a fixed table; pass as_of(store, version) or use mode='archive'"
        )
    if isinstance(source, Snapshot):
        return source.table, source.time_kind
    if isinstance(source, pd.DataFrame):
        source = pa.Table.from_pandas(source, preserve_index=False)
    if not isinstance(source, pa.Table):
        raise UserInputError(f"cannot slide over {type(source).__name__}")

    require_columns(source, (LOCATION, OBSERVATION_TIME), who="SlideEngine")
    table = sort_canonical(source, keys=(LOCATION, OBSERVATION_TIME))
    return table, TimeKind.of_type(table.schema.field(OBSERVATION_TIME).type)


def _check_ref_points(ref_points: Sequence[Any], time_kind: str) -> list:
    ref_points = list(ref_points)
    for ref in ref_points:
        TimeKind.check_scalar(time_kind, ref, what="ref_point")
    for prev, cur in zip(ref_points, ref_points[1:]):
        if not prev < cur:
            raise UserInputError(
                f"ref_points must be strictly increasing, got {prev!r} then {cur!r}"
            )
    return ref_points


def _is_zero_width(width: Any) -> bool:
    try:
        return not width
    except TypeError:
        return False


def _window(table: pa.Table, time_type: pa.DataType, lo: Any, hi: Any) -> pa.Table:
    """observation_time ∈ [lo, hi]"""
    times = table[OBSERVATION_TIME]
    mask = pc.and_(
        pc.greater_equal(times, TimeKind.scalar(lo, time_type)),
        pc.less_equal(times, TimeKind.scalar(hi, time_type)),
    )
    return table.filter(mask)


def _versions_through(store: KeyedRecordSet, ref: Any, snapshots: SnapshotEngine):
    """all_versions：version <= ref 的全部行（保留版本历史）"""
    advisories = snapshots._advisories(store, ref)
    if store.versions_end is not None and ref >= store.versions_end:
        return store.clone(), advisories
    return store.truncate_versions_after(ref), advisories


def _split_table(table: pa.Table):
    """按 location 升序切分（表已按 location 排序，0-copy slice）"""
    for key, (start, length) in location_slices(table).items():
        yield key, table.slice(start, length)


def _split_store(store: KeyedRecordSet):
    for key, sub in _split_table(store.table):
        yield key, store._derive(sub)


# ======================================================================
# functional API
# ======================================================================
def slide(
        source: Any,
        computation: Any,
        *,
        window_before: Any = 0,
        window_after: Any = 0,
        ref_points: Optional[Sequence[Any]] = None,
        mode: SlideMode | str | None = None,
        fail_fast: bool = False,
        all_versions: bool = False,
        cancel: Optional[CancelToken] = None,
        max_workers: int = 1,
        backend: ParallelBackend | str = ParallelBackend.THREAD,
        inst: Instrumentation | None = None,
        args: tuple = (),
        kwargs: Optional[dict] = None,
) -> SlideResult:
    engine = SlideEngine(inst=inst, max_workers=max_workers, backend=ParallelBackend(backend))
    return engine.execute(
        source,
        computation,
        window_before=window_before,
        window_after=window_after,
        ref_points=ref_points,
        mode=mode,
        fail_fast=fail_fast,
        all_versions=all_versions,
        cancel=cancel,
        args=args,
        kwargs=kwargs,
    )


def iter_slide(
        source: Any,
        computation: Any,
        *,
        window_before: Any = 0,
        window_after: Any = 0,
        ref_points: Optional[Sequence[Any]] = None,
        mode: SlideMode | str | None = None,
        fail_fast: bool = False,
        all_versions: bool = False,
        max_workers: int = 1,
        backend: ParallelBackend | str = ParallelBackend.THREAD,
        inst: Instrumentation | None = None,
        args: tuple = (),
        kwargs: Optional[dict] = None,
) -> Iterator[SlideBatch]:
    engine = SlideEngine(inst=inst, max_workers=max_workers, backend=ParallelBackend(backend))
    return engine.iter_batches(
        source,
        computation,
        window_before=window_before,
        window_after=window_after,
        ref_points=ref_points,
        mode=mode,
        fail_fast=fail_fast,
        all_versions=all_versions,
        args=args,
        kwargs=kwargs,
    )
