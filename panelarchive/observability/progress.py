#!filepath: panelarchive/observability/progress.py
from panelarchive import logs


class ProgressReporter:
    """
    轻量进度输出（slide 按 ref_point 汇报，不依赖 tqdm）
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def start(self, task: str, total: int, unit: str = ""):
        if not self.enabled:
            return
        logs.info(f"[Progress] {task} started total={total} {unit}")

    def update(self, task: str, current: int, total: int, unit: str = ""):
        if not self.enabled:
            return
        logs.debug(f"[Progress] {task}: {current}/{total} {unit}")

    def done(self, task: str):
        if not self.enabled:
            return
        logs.info(f"[Progress] {task} done")
