#!filepath: panelarchive/config/app_config.py
import os

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

from .archive_config import ArchiveConfig
from .log_config import LogConfig
from .slide_config import SlideConfig
from .storage_config import StorageConfig


ENV_LOG_LEVEL = "PANELARCHIVE_LOG_LEVEL"
ENV_STORAGE_ROOT = "PANELARCHIVE_STORAGE_ROOT"


def project_root() -> str:
    """
    返回项目根目录（基于当前文件位置推导）:
    panelarchive/config/app_config.py → panelarchive/config → panelarchive → project_root
    """
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "../../"))


class AppConfig(BaseModel):
    log: LogConfig = LogConfig()
    archive: ArchiveConfig = ArchiveConfig()
    slide: SlideConfig = SlideConfig()
    storage: StorageConfig = StorageConfig()

    @classmethod
    def load(cls, path: str | None = None) -> "AppConfig":
        """
        加载 YAML 配置 + .env
        - 默认使用 panelarchive/config/base.yml
        - 不依赖当前工作目录
        - 环境变量覆盖：PANELARCHIVE_LOG_LEVEL / PANELARCHIVE_STORAGE_ROOT
        """
        root = project_root()

        # 1) 先加载 .env（在项目根目录下）
        load_dotenv(os.path.join(root, ".env"))

        # 2) 决定配置文件路径
        if path is None:
            path = os.path.join(os.path.dirname(__file__), "base.yml")

        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file not found: {path}")

        # 3) 读取 YAML
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        # 4) env 覆盖
        level = os.getenv(ENV_LOG_LEVEL)
        if level:
            raw.setdefault("log", {})["level"] = level

        storage_root = os.getenv(ENV_STORAGE_ROOT)
        if storage_root:
            raw.setdefault("storage", {})["root"] = storage_root

        return cls(**raw)
