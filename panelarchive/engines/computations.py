#!filepath: panelarchive/engines/computations.py
from __future__ import annotations

from typing import Any, Callable, Protocol

import pyarrow as pa
import pyarrow.compute as pc

from panelarchive.utils.errors import UserInputError


class Computation(Protocol):
    """
    SlideEngine 唯一的计算契约：

        computation(window, group_key, ref_point, *args, **kwargs) -> Any

    window 为该 location 在窗口内的子表（archive + all_versions 时为 KeyedRecordSet）。
    """

    def __call__(self, window: Any, group_key: Any, ref_point: Any, *args: Any, **kwargs: Any) -> Any:
        ...


def window_table(window: Any) -> pa.Table:
    """KeyedRecordSet / Table 统一取 Arrow 表"""
    return window.table if hasattr(window, "versions_end") else window


# 以下 adapter 都是可 pickle 的类（process backend 需要）
class CountRows:
    """窗口内行数"""

    def __call__(self, window, group_key, ref_point, *args, **kwargs) -> int:
        return window.num_rows


class Aggregate:
    """
    单列 Arrow 聚合：Aggregate("cases", "mean")

    空窗口 / 全空列返回 None。
    """

    SUPPORTED = ("mean", "sum", "min", "max", "count", "stddev", "variance", "first", "last")

    def __init__(self, column: str, fn: str = "mean") -> None:
        if fn not in self.SUPPORTED:
            raise UserInputError(f"unsupported aggregate {fn!r}, expected one of {self.SUPPORTED}")
        self.column = column
        self.fn = fn

    def __call__(self, window, group_key, ref_point, *args, **kwargs) -> Any:
        col = window_table(window)[self.column]
        if self.fn in ("first", "last"):
            valid = pc.drop_null(col)
            if len(valid) == 0:
                return None
            return valid[0 if self.fn == "first" else len(valid) - 1].as_py()
        return getattr(pc, self.fn)(col).as_py()

    def __repr__(self) -> str:
        return f"Aggregate({self.column!r}, {self.fn!r})"


class WithPandas:
    """把窗口转换成 pandas.DataFrame 再交给 fn（fn 签名与 Computation 相同）"""

    def __init__(self, fn: Callable[..., Any]) -> None:
        self.fn = fn

    def __call__(self, window, group_key, ref_point, *args, **kwargs) -> Any:
        return self.fn(window.to_pandas(), group_key, ref_point, *args, **kwargs)


def count_rows() -> CountRows:
    return CountRows()


def aggregate(column: str, fn: str = "mean") -> Aggregate:
    return Aggregate(column, fn)


def with_pandas(fn: Callable[..., Any]) -> WithPandas:
    return WithPandas(fn)


def as_computation(computation: Any) -> Callable[..., Any]:
    """
    归一化为 Computation：
      - callable           → 原样返回
      - "count"            → CountRows
      - ("col", "mean")    → Aggregate
    """
    if isinstance(computation, str):
        if computation == "count":
            return CountRows()
        raise UserInputError(f"unknown computation shorthand {computation!r}")
    if isinstance(computation, tuple) and len(computation) == 2 and all(isinstance(s, str) for s in computation):
        return Aggregate(*computation)
    if callable(computation):
        return computation
    raise UserInputError(f"computation must be callable, 'count' or (column, fn), got {computation!r}")
