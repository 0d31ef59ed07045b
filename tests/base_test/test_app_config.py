#!filepath: tests/base_test/test_app_config.py
import pytest
import yaml

from panelarchive.config import AppConfig
from panelarchive.config.archive_config import ArchiveConfig, MergePolicy
from panelarchive.config.log_config import LogConfig
from panelarchive.config.slide_config import SlideConfig
from panelarchive.config.storage_config import StorageConfig
from panelarchive.pipeline.parallel.types import ParallelBackend


@pytest.fixture
def sample_config_file(tmp_path):
    data = {
        "log": {
            "dir": "logs",
            "rotation": "1 day",
            "retention": "30 days",
            "level": "DEBUG",
        },
        "archive": {
            "merge_policy": "na",
            "compact_on_build": False,
            "location_kind": "state",
            "time_kind": "day",
        },
        "slide": {
            "max_workers": 4,
            "backend": "process",
            "fail_fast": True,
        },
        "storage": {
            "root": "data/covid",
            "compression": "snappy",
        },
    }

    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump(data), encoding="utf-8")
    return config_file


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    monkeypatch.delenv("PANELARCHIVE_LOG_LEVEL", raising=False)
    monkeypatch.delenv("PANELARCHIVE_STORAGE_ROOT", raising=False)


def test_app_config_load(sample_config_file):
    cfg = AppConfig.load(path=str(sample_config_file))

    assert isinstance(cfg, AppConfig)
    assert isinstance(cfg.log, LogConfig)
    assert isinstance(cfg.archive, ArchiveConfig)
    assert isinstance(cfg.slide, SlideConfig)
    assert isinstance(cfg.storage, StorageConfig)


def test_section_values(sample_config_file):
    cfg = AppConfig.load(path=str(sample_config_file))

    assert cfg.log.level == "DEBUG"
    assert cfg.archive.merge_policy == MergePolicy.NA
    assert cfg.archive.compact_on_build is False
    assert cfg.archive.time_kind == "day"
    assert cfg.slide.max_workers == 4
    assert cfg.slide.backend == ParallelBackend.PROCESS
    assert cfg.slide.fail_fast is True
    assert cfg.storage.root == "data/covid"
    assert cfg.storage.compression == "snappy"


def test_default_file_loads():
    cfg = AppConfig.load()

    assert cfg.archive.merge_policy == MergePolicy.LOCF
    assert cfg.slide.backend == ParallelBackend.THREAD


def test_env_overrides(sample_config_file, monkeypatch):
    monkeypatch.setenv("PANELARCHIVE_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("PANELARCHIVE_STORAGE_ROOT", "/srv/archive")

    cfg = AppConfig.load(path=str(sample_config_file))

    assert cfg.log.level == "WARNING"
    assert cfg.storage.root == "/srv/archive"


def test_missing_sections_use_defaults(tmp_path):
    f = tmp_path / "partial.yaml"
    f.write_text(yaml.safe_dump({"log": {"dir": "logs"}}), encoding="utf-8")

    cfg = AppConfig.load(path=str(f))

    assert cfg.log.level == "INFO"
    assert cfg.storage == StorageConfig()


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        AppConfig.load(path=str(tmp_path / "nope.yaml"))


def test_invalid_policy_fails(tmp_path):
    f = tmp_path / "bad.yaml"
    f.write_text(yaml.safe_dump({"archive": {"merge_policy": "average"}}), encoding="utf-8")

    with pytest.raises(Exception):
        AppConfig.load(path=str(f))


def test_slide_workers_must_be_positive(tmp_path):
    f = tmp_path / "bad.yaml"
    f.write_text(yaml.safe_dump({"slide": {"max_workers": 0}}), encoding="utf-8")

    with pytest.raises(Exception):
        AppConfig.load(path=str(f))
