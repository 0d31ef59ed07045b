from __future__ import annotations

import os

from panelarchive.pipeline.parallel.executor import ItemFailure, ParallelExecutor
from panelarchive.pipeline.parallel.types import ParallelBackend, ParallelKind


def square(x: int) -> int:
    return x * x


def test_run_with_empty_items_does_nothing():
    called = []

    result = ParallelExecutor.run(
        kind=ParallelKind.FEED,
        items=[],
        handler=called.append,
    )

    assert result == []
    assert called == []


def test_run_sequential_order_preserved():
    called = []

    def handler(x):
        called.append(x)
        return x.upper()

    items = ["a", "b", "c"]

    result = ParallelExecutor.run(
        kind=ParallelKind.FEED,
        items=items,
        handler=handler,
        max_workers=1,
    )

    assert called == items
    assert result == ["A", "B", "C"]


def test_run_threads_results_in_input_order():
    items = list(range(20))

    result = ParallelExecutor.run(
        kind=ParallelKind.SLIDE_CELL,
        items=items,
        handler=square,
        max_workers=4,
        backend=ParallelBackend.THREAD,
    )

    assert result == [x * x for x in items]


def test_run_processes_results_in_input_order():
    items = [-3, 1, -2]

    result = ParallelExecutor.run(
        kind=ParallelKind.KEY_GROUP,
        items=items,
        handler=abs,
        max_workers=2,
        backend=ParallelBackend.PROCESS,
    )

    assert result == [3, 1, 2]


def test_skip_done_items(fake_manifest):
    fake_manifest.mark_done("b")
    executed: list[str] = []

    def handler(item: str):
        executed.append(item)
        return item

    result = ParallelExecutor.run(
        kind=ParallelKind.FEED,
        items=["a", "b", "c"],
        handler=handler,
        manifest=fake_manifest,
        max_workers=1,
    )

    assert executed == ["a", "c"]
    assert result == ["a", None, "c"]
    assert fake_manifest.done_items() == {"a", "b", "c"}


def test_resolve_workers_caps_by_items():
    assert ParallelExecutor._resolve_workers(["a", "b"], max_workers=10) == 2


def test_resolve_workers_caps_by_cpu():
    cpu = os.cpu_count() or 1
    assert ParallelExecutor._resolve_workers(list(range(100)), max_workers=None) <= cpu


def test_resolve_workers_at_least_one():
    assert ParallelExecutor._resolve_workers(["a"], max_workers=0) == 1


def test_item_failure_keeps_item_and_error():
    err = RuntimeError("boom")
    failure = ItemFailure(item="x", error=err)
    assert failure.item == "x"
    assert failure.error is err
