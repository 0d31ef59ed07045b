# panelarchive/pipeline/parallel/manifest.py
from __future__ import annotations

import threading
from typing import Dict


class ParallelManifest:
    """
    并行最小契约：
    - executor 只依赖这三个方法
    """

    def is_done(self, item: str) -> bool:
        raise NotImplementedError

    def mark_done(self, item: str) -> None:
        raise NotImplementedError

    def mark_failed(self, item: str, reason: str) -> None:
        raise NotImplementedError


class InMemoryManifest(ParallelManifest):
    """
    线程安全的 in-memory manifest（一次 slide / merge 调用内有效）
    """

    def __init__(self) -> None:
        self._done: Dict[str, bool] = {}
        self._failed: Dict[str, str] = {}
        self._lock = threading.Lock()

    def is_done(self, item: str) -> bool:
        with self._lock:
            return self._done.get(item, False)

    def mark_done(self, item: str) -> None:
        with self._lock:
            self._done[item] = True
            self._failed.pop(item, None)

    def mark_failed(self, item: str, reason: str) -> None:
        with self._lock:
            self._failed[item] = reason

    @property
    def failed(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._failed)
