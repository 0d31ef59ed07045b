#!filepath: panelarchive/config/archive_config.py
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class MergePolicy(str, Enum):
    LOCF = "locf"
    NA = "na"
    FORBID = "forbid"
    TRUNCATE = "truncate"


class ArchiveConfig(BaseModel):
    """
    KeyedRecordSet / MergeEngine 的默认行为。

    location_kind / time_kind 为 None 时由数据推断。
    """

    merge_policy: MergePolicy = MergePolicy.LOCF
    compact_on_build: bool = True
    location_kind: Optional[str] = None
    time_kind: Optional[str] = None
