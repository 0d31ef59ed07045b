from .app_config import AppConfig
from .archive_config import ArchiveConfig, MergePolicy
from .log_config import LogConfig
from .slide_config import SlideConfig
from .storage_config import StorageConfig

__all__ = [
    "AppConfig",
    "ArchiveConfig",
    "MergePolicy",
    "LogConfig",
    "SlideConfig",
    "StorageConfig",
]
