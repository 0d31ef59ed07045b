# panelarchive/core/kinds.py
from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

import pyarrow as pa
import pyarrow.compute as pc

from panelarchive.utils.errors import InconsistentKind, UserInputError


# ======================================================================
# location_kind
# ======================================================================
class LocationKind:
    """
    location 的类型（geo 粒度）推断与校验。

    推断规则（只针对字符串）：
      - 全部为 "us"                 → nation
      - 全部为两位字母              → state
      - 全部为五位数字              → county
      - 其他                        → custom
    hhs / hrr / msa 只能显式声明（数字编码有歧义）。
    """

    STATE = "state"
    COUNTY = "county"
    HHS = "hhs"
    HRR = "hrr"
    MSA = "msa"
    NATION = "nation"
    CUSTOM = "custom"

    ALL = (STATE, COUNTY, HHS, HRR, MSA, NATION, CUSTOM)

    _TWO_ALPHA = re.compile(r"^[A-Za-z]{2}$")
    _FIVE_DIGIT = re.compile(r"^\d{5}$")
    _DIGITS = re.compile(r"^\d+$")

    @classmethod
    def infer(cls, values: Iterable[Any]) -> str:
        values = list(values)
        if not values or not all(isinstance(v, str) for v in values):
            return cls.CUSTOM

        if all(v.lower() == "us" for v in values):
            return cls.NATION
        if all(cls._TWO_ALPHA.match(v) for v in values):
            return cls.STATE
        if all(cls._FIVE_DIGIT.match(v) for v in values):
            return cls.COUNTY
        return cls.CUSTOM

    @classmethod
    def validate(cls, kind: str, values: Iterable[Any]) -> None:
        if kind not in cls.ALL:
            raise UserInputError(f"unknown location_kind={kind!r}, expected one of {cls.ALL}")
        if kind == cls.CUSTOM:
            return

        bad = [v for v in values if not cls._matches(kind, v)]
        if bad:
            raise InconsistentKind(
                f"location values do not match location_kind={kind!r}: {bad[:5]}"
            )

    @classmethod
    def _matches(cls, kind: str, v: Any) -> bool:
        if kind in (cls.STATE, cls.NATION):
            return isinstance(v, str) and bool(cls._TWO_ALPHA.match(v))
        if kind in (cls.COUNTY, cls.MSA):
            return isinstance(v, str) and bool(cls._FIVE_DIGIT.match(v))
        if kind in (cls.HHS, cls.HRR):
            upper = 10 if kind == cls.HHS else 457
            if isinstance(v, bool):
                return False
            if isinstance(v, int):
                return 1 <= v <= upper
            if isinstance(v, str) and cls._DIGITS.match(v):
                return 1 <= int(v) <= upper
            return False
        return True


# ======================================================================
# time_kind
# ======================================================================
class TimeKind:
    """
    observation_time / version 共用的时间类型。

      - day     : date32，步长 1 天
      - week    : date32，步长 7 天（所有 observation_time 同一个 weekday）
      - integer : int64，步长 1
      - custom  : 其他可排序标量；窗口宽度必须能直接与时间值相减（t - width）
    """

    DAY = "day"
    WEEK = "week"
    INTEGER = "integer"
    CUSTOM = "custom"

    ALL = (DAY, WEEK, INTEGER, CUSTOM)

    # --------------------------------------------------
    # inference / normalization
    # --------------------------------------------------
    @classmethod
    def of_type(cls, arrow_type: pa.DataType) -> str:
        if pa.types.is_date(arrow_type):
            return cls.DAY
        if pa.types.is_integer(arrow_type):
            return cls.INTEGER
        return cls.CUSTOM

    @classmethod
    def normalize_columns(
            cls,
            table: pa.Table,
            time_col: str,
            version_col: str,
            declared: Optional[str] = None,
    ) -> tuple[pa.Table, str]:
        """
        统一两条时间轴的 Arrow 类型，并返回 time_kind。

        - date64 → date32，整数统一为 int64
        - 两条轴类型类别不同 → InconsistentKind
        - 声明的 kind 与数据不符 → InconsistentKind
        """
        t_type = table.schema.field(time_col).type
        v_type = table.schema.field(version_col).type

        t_kind, v_kind = cls.of_type(t_type), cls.of_type(v_type)
        if t_kind != v_kind or (t_kind == cls.CUSTOM and t_type != v_type):
            raise InconsistentKind(
                f"{time_col} ({t_type}) and {version_col} ({v_type}) must share one time type"
            )

        target = {cls.DAY: pa.date32(), cls.INTEGER: pa.int64()}.get(t_kind)
        if target is not None:
            for col in (time_col, version_col):
                idx = table.schema.get_field_index(col)
                if table.schema.field(col).type != target:
                    table = table.set_column(idx, col, pc.cast(table[col], target))

        kind = t_kind
        if declared is not None:
            if declared not in cls.ALL:
                raise UserInputError(f"unknown time_kind={declared!r}, expected one of {cls.ALL}")
            if declared == cls.WEEK and t_kind == cls.DAY:
                cls._check_weekly(table[time_col].to_pylist())
                kind = cls.WEEK
            elif declared == cls.CUSTOM:
                kind = cls.CUSTOM
            elif declared != t_kind:
                raise InconsistentKind(
                    f"time_kind={declared!r} declared but columns are {t_type}"
                )
        return table, kind

    @classmethod
    def _check_weekly(cls, values: list) -> None:
        weekdays = {v.weekday() for v in values if v is not None}
        if len(weekdays) > 1:
            raise InconsistentKind(
                f"time_kind='week' requires one weekday, found weekdays {sorted(weekdays)}"
            )

    # --------------------------------------------------
    # scalar checks
    # --------------------------------------------------
    @classmethod
    def check_scalar(cls, kind: str, value: Any, *, what: str = "cutoff") -> Any:
        """确认 cutoff / ref_point 与 store 的 time_kind 一致"""
        if kind in (cls.DAY, cls.WEEK):
            if isinstance(value, datetime) or not isinstance(value, date):
                raise InconsistentKind(f"{what}={value!r} must be a datetime.date for time_kind={kind!r}")
        elif kind == cls.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                raise InconsistentKind(f"{what}={value!r} must be an int for time_kind={kind!r}")
        return value

    @classmethod
    def scalar(cls, value: Any, arrow_type: pa.DataType) -> pa.Scalar:
        try:
            return pa.scalar(value, type=arrow_type)
        except (pa.ArrowInvalid, pa.ArrowTypeError, TypeError) as err:
            raise InconsistentKind(f"value {value!r} is not compatible with {arrow_type}") from err

    # --------------------------------------------------
    # time arithmetic
    # --------------------------------------------------
    @classmethod
    def check_width(cls, kind: str, width: Any, *, what: str) -> None:
        if isinstance(width, bool):
            raise UserInputError(f"{what} must be a step count or a delta, got {width!r}")
        if isinstance(width, int):
            if width < 0:
                raise UserInputError(f"{what} must be >= 0, got {width}")
            return
        if isinstance(width, timedelta):
            if kind not in (cls.DAY, cls.WEEK, cls.CUSTOM):
                raise UserInputError(f"{what} timedelta not valid for time_kind={kind!r}")
            if width < timedelta(0):
                raise UserInputError(f"{what} must be >= 0, got {width}")
            return
        if kind != cls.CUSTOM:
            raise UserInputError(f"{what}={width!r} not valid for time_kind={kind!r}")

    @classmethod
    def shift(cls, kind: str, t: Any, width: Any) -> Any:
        """t + width（width 为步数或原生 delta）"""
        if isinstance(width, int) and not isinstance(width, bool):
            if width == 0:
                return t
            if kind == cls.DAY:
                return t + timedelta(days=width)
            if kind == cls.WEEK:
                return t + timedelta(weeks=width)
            if kind == cls.INTEGER:
                return t + width
        try:
            return t + width
        except TypeError as err:
            raise UserInputError(f"cannot shift {t!r} by {width!r} for time_kind={kind!r}") from err

    @classmethod
    def unshift(cls, kind: str, t: Any, width: Any) -> Any:
        """t - width"""
        if isinstance(width, int) and not isinstance(width, bool):
            return cls.shift(kind, t, -width)
        try:
            return t - width
        except TypeError as err:
            raise UserInputError(f"cannot shift {t!r} by -{width!r} for time_kind={kind!r}") from err

    @classmethod
    def next_after(cls, kind: str, t: Any) -> Optional[Any]:
        """下一个可表示的版本；custom 无法推导时返回 None"""
        if kind in (cls.DAY, cls.WEEK, cls.INTEGER):
            return cls.shift(kind, t, 1)
        return None
