# panelarchive/store/archive_io.py
from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import pyarrow as pa
import pyarrow.csv as csv
import pyarrow.parquet as pq

from panelarchive import logs
from panelarchive.core.kinds import TimeKind
from panelarchive.core.schema import (
    KEY_COLUMNS,
    LOCATION,
    META_CLOBBERABLE_START,
    META_LOCATION_KIND,
    META_TIME_KIND,
    META_VERSIONS_END,
    OBSERVATION_TIME,
    VERSION,
    require_columns,
    sort_canonical,
)
from panelarchive.meta.base import BaseMeta, MetaOutput
from panelarchive.store.record_set import KeyedRecordSet
from panelarchive.utils.errors import ArchiveError, ManifestMismatch, UserInputError
from panelarchive.utils.parquet_utils import ParquetAtomicWriter


# ======================================================================
# version scalar <-> text
# ======================================================================
def encode_version(value: Any, time_kind: str) -> Optional[str]:
    """versions_end / clobberable_versions_start → metadata 文本"""
    if value is None:
        return None
    if time_kind in (TimeKind.DAY, TimeKind.WEEK):
        return value.isoformat()
    if time_kind == TimeKind.INTEGER:
        return str(int(value))
    try:
        return json.dumps(value)
    except TypeError as err:
        raise UserInputError(
            f"custom version {value!r} cannot be persisted (needs a JSON scalar)"
        ) from err


def decode_version(text: Optional[str], time_kind: str) -> Any:
    if text is None:
        return None
    if time_kind in (TimeKind.DAY, TimeKind.WEEK):
        return date.fromisoformat(text)
    if time_kind == TimeKind.INTEGER:
        return int(text)
    return json.loads(text)


def _manifest_for(path: Path) -> BaseMeta:
    # store.parquet -> store.manifest.json（同目录）
    return BaseMeta(meta_dir=path.parent, name=path.stem)


# ======================================================================
# save / load
# ======================================================================
def save_store(
        store: KeyedRecordSet,
        path: str | Path,
        *,
        compression: str = "zstd",
        upstream: Sequence[str | Path] = (),
        attrs: Optional[Mapping[str, Any]] = None,
) -> Path:
    """
    canonical table → Parquet（原子写）+ <stem>.manifest.json

    store 级 metadata 同时写进 Parquet schema metadata，
    因此单独的 parquet 文件也能被 load_store 读回。
    attrs 原样追加进 manifest outputs（例如产出该 store 的构建参数）。
    """
    path = Path(path)
    kind = store.time_kind
    versions_end = encode_version(store.versions_end, kind)
    clobber = encode_version(store.clobberable_versions_start, kind)

    metadata = {
        META_LOCATION_KIND: store.location_kind.encode("utf-8"),
        META_TIME_KIND: kind.encode("utf-8"),
    }
    if versions_end is not None:
        metadata[META_VERSIONS_END] = versions_end.encode("utf-8")
    if clobber is not None:
        metadata[META_CLOBBERABLE_START] = clobber.encode("utf-8")

    table = store.table.replace_schema_metadata(metadata)
    ParquetAtomicWriter.write_table(table, path, compression=compression)

    _manifest_for(path).commit(
        MetaOutput(
            input_files=tuple(Path(p) for p in upstream),
            output_file=path,
            rows=table.num_rows,
            attrs={
                "location_kind": store.location_kind,
                "time_kind": kind,
                "versions_end": versions_end,
                "clobberable_versions_start": clobber,
                "value_columns": store.value_columns,
                **(attrs or {}),
            },
        )
    )

    logs.info(f"[archive_io] saved {path.name} rows={table.num_rows} versions_end={versions_end}")
    return path


def load_store(path: str | Path, *, verify: bool = True) -> KeyedRecordSet:
    """
    读回 save_store 写出的 store。

    verify=True 且存在 manifest 时，文件大小 / 行数必须与 manifest 一致，
    否则 ManifestMismatch。
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"store file not found: {path}")

    table = pq.read_table(path)
    meta = table.schema.metadata or {}

    if META_LOCATION_KIND not in meta or META_TIME_KIND not in meta:
        raise ArchiveError(f"{path.name} has no panelarchive metadata; use read_feed() for raw feeds")
    require_columns(table, KEY_COLUMNS, who="load_store")

    location_kind = meta[META_LOCATION_KIND].decode("utf-8")
    time_kind = meta[META_TIME_KIND].decode("utf-8")
    versions_end = decode_version(_meta_text(meta, META_VERSIONS_END), time_kind)
    clobber = decode_version(_meta_text(meta, META_CLOBBERABLE_START), time_kind)

    if verify:
        _verify_manifest(path, table.num_rows)

    store = KeyedRecordSet(
        table=sort_canonical(table.replace_schema_metadata(None)),
        location_kind=location_kind,
        time_kind=time_kind,
        versions_end=versions_end,
        clobberable_versions_start=clobber,
    )
    logs.info(f"[archive_io] loaded {path.name} rows={store.num_rows}")
    return store


def _meta_text(meta: dict, key: bytes) -> Optional[str]:
    raw = meta.get(key)
    return raw.decode("utf-8") if raw is not None else None


def _verify_manifest(path: Path, rows: int) -> None:
    meta = _manifest_for(path)
    manifest = meta.load()
    if manifest is None:
        logs.warning(f"[archive_io] no manifest for {path.name}, skipping verification")
        return

    recorded = manifest.get("outputs", {})
    if recorded.get("rows") != rows:
        raise ManifestMismatch(
            f"{path.name}: manifest records rows={recorded.get('rows')} but file has {rows}"
        )
    if meta.output_changed(manifest):
        raise ManifestMismatch(f"{path.name}: file size differs from manifest")


# ======================================================================
# raw feeds
# ======================================================================
_TIME_TYPES = {
    TimeKind.DAY: pa.date32(),
    TimeKind.WEEK: pa.date32(),
    TimeKind.INTEGER: pa.int64(),
}


def read_feed(
        path: str | Path,
        *,
        time_kind: Optional[str] = None,
        location_type: pa.DataType = pa.string(),
) -> pa.Table:
    """
    读取一份 revision feed（CSV / Parquet）→ pyarrow.Table

      - location 默认按字符串读取（保留 FIPS 前导 0）
      - 声明 time_kind 时 observation_time / version 按对应 Arrow 类型解析
      - 其余列交给 Arrow 推断，作为不透明的 value 列
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"feed not found: {path}")
    if time_kind is not None and time_kind not in TimeKind.ALL:
        raise UserInputError(f"unknown time_kind={time_kind!r}, expected one of {TimeKind.ALL}")

    suffix = path.suffix.lower()
    if suffix == ".parquet":
        table = pq.read_table(path)
    elif suffix in (".csv", ".gz"):
        column_types = {LOCATION: location_type}
        time_type = _TIME_TYPES.get(time_kind)
        if time_type is not None:
            column_types[OBSERVATION_TIME] = time_type
            column_types[VERSION] = time_type

        table = csv.read_csv(
            path,
            convert_options=csv.ConvertOptions(
                column_types=column_types,
                strings_can_be_null=True,
                null_values=["", "NA", "NULL", "N/A", "nan"],
                quoted_strings_can_be_null=True,
            ),
        )
    else:
        raise UserInputError(f"unsupported feed format {path.suffix!r} (expected .csv or .parquet)")

    require_columns(table, KEY_COLUMNS, who=f"read_feed({path.name})")
    logs.debug(f"[archive_io] read feed {path.name} rows={table.num_rows}")
    return table
