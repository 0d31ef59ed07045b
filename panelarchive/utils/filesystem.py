#!filepath: panelarchive/utils/filesystem.py
from pathlib import Path

from panelarchive import logs


class FileSystem:
    """
    统一文件系统工具
    - 自动创建目录
    - 安全写入文件（临时文件 → rename）
    - 清理中断写入残留的临时文件
    """

    @staticmethod
    def ensure_dir(path: str | Path) -> Path:
        """
        创建目录（如果不存在）
        """
        p = Path(path)
        if not p.exists():
            p.mkdir(parents=True, exist_ok=True)
            logs.debug(f"[FS] 创建目录: {p}")
        return p

    @staticmethod
    def get_file_size(path: str | Path) -> int:
        """
        返回文件大小（字节），不存在返回 0
        """
        p = Path(path)
        if not p.exists():
            return 0
        return p.stat().st_size

    @staticmethod
    def safe_write(path: str | Path, data: bytes) -> None:
        """
        原子写入（避免部分写入导致文件损坏）
            1) 先写入 tmp 文件
            2) rename → 正式文件
        """
        path = Path(path)
        FileSystem.ensure_dir(path.parent)

        tmp_path = path.with_suffix(path.suffix + ".tmp")

        with open(tmp_path, "wb") as f:
            f.write(data)
            logs.debug(f"[FS] 写入临时文件: {tmp_path}")

        tmp_path.replace(path)
        logs.debug(f"[FS] 原子写入完成: {path}")

    @staticmethod
    def clean_temp_files(path: str | Path, suffix=".tmp") -> int:
        """
        删除目录下所有 *.tmp 临时文件（中断写入的残留）
        返回删除的数量
        """
        p = Path(path)
        count = 0

        if not p.exists():
            return 0

        for f in p.rglob(f"*{suffix}"):
            f.unlink()
            count += 1
            logs.debug(f"[FS] 删除临时文件: {f}")

        return count
