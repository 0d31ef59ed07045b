#!filepath: panelarchive/pipeline/context.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pyarrow as pa

from panelarchive.config.archive_config import ArchiveConfig, MergePolicy
from panelarchive.store.record_set import KeyedRecordSet


@dataclass
class ArchiveContext:
    """
    ArchiveContext = Pipeline 运行期唯一上下文

    设计原则：
    - Pipeline 负责构造
    - Step 之间只通过 ctx 通信
    - 只存事实 / 中间态，不放业务逻辑
    """

    # -------------------------
    # identity
    # -------------------------
    name: str
    feeds: List[Path]
    output_dir: Path

    # -------------------------
    # behaviour
    # -------------------------
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    compression: str = "zstd"

    # -------------------------
    # data layer（feed stem → 中间结果）
    # -------------------------
    tables: Dict[str, pa.Table] = field(default_factory=dict)
    stores: Dict[str, KeyedRecordSet] = field(default_factory=dict)
    merged: Optional[KeyedRecordSet] = None

    # -------------------------
    # result layer
    # -------------------------
    output_file: Optional[Path] = None
    skipped: bool = False

    # -------- runtime flags --------
    abort_pipeline: bool = False
    abort_reason: Optional[str] = None

    @property
    def store_path(self) -> Path:
        return self.output_dir / f"{self.name}.parquet"

    @property
    def build_settings(self) -> dict:
        """影响产出内容的配置；与 manifest 中记录的不一致时不能复用旧产出"""
        return self.archive.model_dump(mode="json")

    @property
    def merge_policy(self) -> MergePolicy:
        return self.archive.merge_policy

    def abort(self, reason: str) -> None:
        self.abort_pipeline = True
        self.abort_reason = reason
