#!filepath: panelarchive/__init__.py

from .utils.logger import Logging, logs, init_logging
from .utils.filesystem import FileSystem
from .config.app_config import AppConfig

from .utils.errors import (
    ArchiveError,
    ColumnCollision,
    DuplicateKey,
    FutureCutoffAdvisory,
    InconsistentKind,
    MissingColumns,
    PerCellComputationError,
    UnresolvableMerge,
    UserInputError,
)
from .store.record_set import KeyedRecordSet
from .store.snapshot import Snapshot
from .store.archive_io import load_store, read_feed, save_store
from .engines.compact_engine import compact
from .engines.snapshot_engine import as_of, as_of_latest
from .engines.merge_engine import merge
from .engines.slide_engine import CancelToken, SlideResult, iter_slide, slide

__version__ = "0.1.0"

# alias 简化调用
fs = FileSystem

__all__ = [
    "logs", "Logging", "init_logging",
    "fs",
    "AppConfig",
    "KeyedRecordSet", "Snapshot",
    "compact", "as_of", "as_of_latest", "merge", "slide", "iter_slide",
    "CancelToken", "SlideResult",
    "save_store", "load_store", "read_feed",
    "ArchiveError", "UserInputError", "MissingColumns", "DuplicateKey",
    "InconsistentKind", "ColumnCollision", "UnresolvableMerge",
    "PerCellComputationError", "FutureCutoffAdvisory",
]
