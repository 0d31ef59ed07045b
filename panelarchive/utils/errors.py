# panelarchive/utils/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class ArchiveError(Exception):
    """
    panelarchive 所有结构性错误的基类。
    build / merge 阶段抛出即中止，不返回部分结果。
    """


class UserInputError(ArchiveError, ValueError):
    """
    Raised for invalid user-provided arguments (ref points, windows, policies).
    Should NOT print traceback.
    """


class MissingColumns(ArchiveError):
    """输入表缺少 location / observation_time / version 等角色列。"""

    def __init__(self, missing: list[str], who: str = "") -> None:
        self.missing = list(missing)
        self.who = who
        prefix = f"[{who}] " if who else ""
        super().__init__(f"{prefix}missing required columns: {self.missing}")

    def __reduce__(self):
        return (type(self), (self.missing, self.who))


class DuplicateKey(ArchiveError):
    """
    两行共享同一个 (location, observation_time, version)，但 value 不同。
    """

    def __init__(self, keys: list[tuple[Any, Any, Any]]) -> None:
        self.keys = list(keys)
        shown = ", ".join(str(k) for k in self.keys[:5])
        more = f" (+{len(self.keys) - 5} more)" if len(self.keys) > 5 else ""
        super().__init__(
            f"conflicting values for key (location, observation_time, version): {shown}{more}"
        )

    def __reduce__(self):
        return (type(self), (self.keys,))


class InconsistentKind(ArchiveError):
    """同一个 store 内混用了不兼容的 location / time 表达。"""


class ColumnCollision(ArchiveError):
    """merge 两侧 value 列重名（且没有通过 prefixes 消解）。"""

    def __init__(self, columns: list[str]) -> None:
        self.columns = sorted(columns)
        super().__init__(
            f"value columns present in both stores: {self.columns}; "
            f"pass prefixes=(...) to disambiguate"
        )

    def __reduce__(self):
        return (type(self), (self.columns,))


class UnresolvableMerge(ArchiveError):
    """forbid 策略下，某个 key / version 组合需要填补。"""


class ManifestMismatch(ArchiveError):
    """store 文件与其 manifest 记录的 rows / size 不一致（文件被改写或损坏）。"""


class PerCellComputationError(ArchiveError):
    """
    单个 (location, ref_point) 的用户计算失败。

    原始异常保存在 original，并作为 __cause__ 链接。
    """

    def __init__(self, ref_point: Any, group_key: Any, original: BaseException) -> None:
        self.ref_point = ref_point
        self.group_key = group_key
        self.original = original
        super().__init__(
            f"computation failed at ref_point={ref_point!r} "
            f"group={group_key!r}: {type(original).__name__}: {original}"
        )

    def __reduce__(self):
        return (type(self), (self.ref_point, self.group_key, self.original))


@dataclass(frozen=True)
class FutureCutoffAdvisory:
    """
    非致命提示：cutoff 超出了已记录的版本范围，结果是 provisional 的。

    不会被 raise，只作为 metadata 挂在 Snapshot / SlideResult 上。

    reason:
      - "beyond_versions_end" : cutoff > versions_end
      - "clobberable"         : cutoff >= clobberable_versions_start
      - "latest"              : as_of_latest() 解析出的 cutoff
    """

    cutoff: Any
    latest_version: Any
    reason: str = "beyond_versions_end"

    @property
    def message(self) -> str:
        if self.reason == "clobberable":
            return (
                f"cutoff {self.cutoff!r} is in the clobberable range starting at "
                f"{self.latest_version!r}; values may still be overwritten"
            )
        if self.reason == "latest":
            return (
                f"snapshot resolved to latest version {self.cutoff!r}; "
                f"later revisions may still arrive"
            )
        return (
            f"cutoff {self.cutoff!r} exceeds latest recorded version "
            f"{self.latest_version!r}; snapshot may be incomplete"
        )

    def __str__(self) -> str:
        return self.message
