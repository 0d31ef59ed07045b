# tests/pipeline/parallel/conftest.py
from __future__ import annotations

import pytest

from panelarchive.pipeline.parallel.manifest import InMemoryManifest


class FakeManifest(InMemoryManifest):
    """InMemoryManifest + 断言辅助"""

    def done_items(self) -> set[str]:
        return {k for k, v in self._done.items() if v}

    def failed_items(self) -> set[str]:
        return set(self.failed)


@pytest.fixture
def fake_manifest() -> FakeManifest:
    return FakeManifest()
