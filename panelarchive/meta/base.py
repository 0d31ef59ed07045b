from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from panelarchive import logs
from panelarchive.utils.filesystem import FileSystem


@dataclass(frozen=True)
class MetaOutput:
    """
    MetaOutput（能力声明式）

    表达：
      - 我从哪些上游 feed / store 得到
      - 产出了哪个事实文件
      - 这个事实文件的基本规模
      - attrs：store 级元信息（kind / versions_end / value_columns ...）
    """

    input_files: tuple[Path, ...]
    output_file: Path
    rows: int
    attrs: Dict[str, Any] = field(default_factory=dict)


class BaseMeta:
    """
    BaseMeta

    统一职责：
      - 记录"在什么上游状态下"产生了某个 store 文件
      - 判断上游 / 下游是否发生变化（size fingerprint）
      - manifest 以 <name>.manifest.json 形式与 store 放在一起

    不理解 store 的业务含义，attrs 原样写入 / 读出。
    """

    META_VERSION = 1

    def __init__(self, meta_dir: Path, name: str, stage: str = "archive") -> None:
        self.meta_dir = Path(meta_dir)
        self.stage = stage
        self._name = name

    # --------------------------------------------------
    @property
    def name(self) -> str:
        return f"{self._name}.manifest.json"

    @property
    def path(self) -> Path:
        return self.meta_dir / self.name

    def exists(self) -> bool:
        return self.path.exists()

    # --------------------------------------------------
    def load(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        with self.path.open("r", encoding="utf-8") as f:
            return json.load(f)

    # --------------------------------------------------
    def commit(self, result: MetaOutput | dict) -> None:
        if isinstance(result, dict):
            result = MetaOutput(**result)

        payload: Dict[str, Any] = {
            "version": self.META_VERSION,
            "stage": self.stage,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "upstream": {
                "files": [
                    {
                        "file": str(p),
                        "fingerprint": {"size": FileSystem.get_file_size(p)},
                    }
                    for p in result.input_files
                ],
            },
            "outputs": {
                "file": str(result.output_file),
                "rows": result.rows,
                "size": FileSystem.get_file_size(result.output_file),
                **result.attrs,
            },
        }

        data = json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")
        FileSystem.safe_write(self.path, data)
        logs.debug(f"[meta] committed {self.path.name} rows={result.rows}")

    # --------------------------------------------------
    def upstream_changed(self, input_files: Optional[Sequence[Path]] = None) -> bool:
        """
        True  -> 需要重跑
        False -> 可复用
        """
        manifest = self.load()
        if manifest is None:
            logs.debug(f"[meta] manifest not exist: {self.path.name}")
            return True

        recorded = manifest.get("upstream", {}).get("files", [])

        if input_files is not None:
            current_names = sorted(str(p) for p in input_files)
            if current_names != sorted(r.get("file", "") for r in recorded):
                logs.warning(f"[meta] upstream file set changed: {self.path.name}")
                return True

        for r in recorded:
            size = FileSystem.get_file_size(r.get("file", ""))
            if r.get("fingerprint", {}).get("size") != size:
                logs.warning(f"[meta] upstream_changed size: {r.get('file')}")
                return True

        return self.output_changed(manifest)

    def output_changed(self, manifest: Optional[dict] = None) -> bool:
        """下游完整性校验：文件缺失或大小与 manifest 不一致"""
        manifest = manifest if manifest is not None else self.load()
        if manifest is None:
            return True

        output_file = Path(manifest.get("outputs", {}).get("file", ""))
        if not output_file.exists():
            logs.debug(f"[meta] output_file not exist: {output_file}")
            return True

        if manifest["outputs"].get("size") != FileSystem.get_file_size(output_file):
            logs.warning(f"[meta] output_file size change: {output_file}")
            return True

        return False
