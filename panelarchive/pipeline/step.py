#!filepath: panelarchive/pipeline/step.py
from __future__ import annotations

from panelarchive.observability.instrumentation import (
    Instrumentation,
    NoOpInstrumentation,
)
from panelarchive.pipeline.context import ArchiveContext


class PipelineStep:
    """
    Pipeline Step 基类

    职责：
      1. orchestration（循环 / 条件执行 / 读写 ctx）
      2. 提供 Step 级时间语义边界（parent scope）

    设计铁律：
      - Step 本身不进入 timeline，叶子 timer 由 Step 内部 / engine 写入
      - Step 行为不依赖 inst 是否存在
    """

    stage: str = ""

    def __init__(self, inst: Instrumentation | None = None):
        self.inst: Instrumentation | NoOpInstrumentation = (
            inst if inst is not None else NoOpInstrumentation()
        )

    @property
    def step_name(self) -> str:
        return self.__class__.__name__

    def timed(self):
        """Step 级 wall-time（record=False，不进入 timeline）"""
        return self.inst.timer(self.step_name, record=False)

    def run(self, ctx: ArchiveContext) -> ArchiveContext:
        raise NotImplementedError
