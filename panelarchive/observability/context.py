#!filepath: panelarchive/observability/context.py
from dataclasses import dataclass, field
from typing import Dict, Any


@dataclass
class InstrumentationContext:
    """
    运行期上下文（只用于日志 / 报告）：
    - 当前 step
    - 当前 store / feed
    - 当前 ref_point
    """

    state: Dict[str, Any] = field(default_factory=dict)

    def set(self, key: str, value: Any):
        self.state[key] = value

    def get(self, key: str, default=None):
        return self.state.get(key, default)
