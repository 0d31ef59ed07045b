# panelarchive/pipeline/parallel/types.py
from enum import Enum


class ParallelKind(str, Enum):
    KEY_GROUP = "key_group"
    SLIDE_CELL = "slide_cell"
    FEED = "feed"


class ParallelBackend(str, Enum):
    PROCESS = "process"
    THREAD = "thread"
