#!filepath: panelarchive/config/slide_config.py
from __future__ import annotations

from pydantic import BaseModel, Field

from panelarchive.pipeline.parallel.types import ParallelBackend


class SlideConfig(BaseModel):
    """
    SlideEngine 默认执行参数（窗口 / ref_points 永远由调用方显式给出）
    """

    max_workers: int = Field(default=1, ge=1)
    backend: ParallelBackend = ParallelBackend.THREAD
    fail_fast: bool = False
