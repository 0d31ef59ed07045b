#!filepath: panelarchive/engines/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from panelarchive.observability.instrumentation import Instrumentation, NoOpInstrumentation


class BaseEngine(ABC):
    """
    Engine 抽象基类（Atomic Engine Layer）：

    - 不做任何 I/O（不读写 parquet / 文件）
    - 输入 store / snapshot → 输出新的对象，绝不修改输入
    - observability 是可选横切关注点（inst=None → No-op）
    """

    def __init__(self, inst: Instrumentation | None = None):
        self.inst: Instrumentation | NoOpInstrumentation = (
            inst if inst is not None else NoOpInstrumentation()
        )

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def execute(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError
