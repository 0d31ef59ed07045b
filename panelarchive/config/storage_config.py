#!filepath: panelarchive/config/storage_config.py
from pydantic import BaseModel


class StorageConfig(BaseModel):
    root: str = "data/archive"
    compression: str = "zstd"
