#!filepath: tests/base_test/test_logger.py
import pytest
from loguru import logger

from panelarchive import logs
from panelarchive.config.log_config import LogConfig
from panelarchive.utils.logger import init_logging


def test_catch_logs_and_reraises():
    captured = []
    sink_id = logger.add(lambda msg: captured.append(str(msg)))

    @logs.catch(msg="load failed")
    def broken():
        raise ValueError("bad feed")

    with pytest.raises(ValueError, match="bad feed"):
        broken()

    logger.remove(sink_id)
    assert any("load failed" in line for line in captured)


def test_catch_returns_value():
    @logs.catch()
    def ok(x):
        return x + 1

    assert ok(1) == 2


def test_init_logging_reconfigures_singleton(tmp_path):
    cfg = LogConfig(dir=str(tmp_path / "logs"), level="DEBUG")

    configured = init_logging(cfg)

    assert configured is logs
    assert logs.level == "DEBUG"
    assert (tmp_path / "logs").is_dir()
    logger.remove()
