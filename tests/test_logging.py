"""
Test logging configuration: readable console, JSON log files
"""

import json
import logging

import pytest
import structlog

from triage.core.config import LoggingConfig
from triage.core.logging import build_logging_dict, configure_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


def test_logging_dict_follows_settings(tmp_path):
    config = LoggingConfig(level="debug", directory=tmp_path, max_bytes=1024, backup_count=2)
    settings = build_logging_dict(config)

    assert config.level == "DEBUG"
    assert settings["handlers"]["file"]["maxBytes"] == 1024
    assert settings["handlers"]["file"]["backupCount"] == 2
    assert settings["handlers"]["error_file"]["level"] == "ERROR"
    assert settings["handlers"]["file"]["filename"] == str(tmp_path / "triage.log")
    assert settings["loggers"]["mitmproxy"] == {"level": "WARNING"}
    assert isinstance(
        settings["formatters"]["console"]["processors"][-1],
        structlog.dev.ConsoleRenderer
    )
    assert isinstance(
        settings["formatters"]["json"]["processors"][-1],
        structlog.processors.JSONRenderer
    )


def test_invalid_logging_settings_are_rejected():
    with pytest.raises(ValueError):
        LoggingConfig(level="chatty")
    with pytest.raises(ValueError):
        LoggingConfig(console_format="xml")


def test_log_files_receive_json_lines(tmp_path, restore_logging):
    configure_logging(LoggingConfig(directory=tmp_path / "logs"))

    log = structlog.get_logger("triage.test").bind(component="test")
    log.info("Scan completed", url="example.com/a", risk="high")
    log.error("Scan failed", url="example.com/b", error="boom")
    logging.getLogger("mitmproxy.proxy").info("per-flow chatter")

    main_lines = (tmp_path / "logs" / "triage.log").read_text(encoding="utf-8").splitlines()
    error_lines = (tmp_path / "logs" / "errors.log").read_text(encoding="utf-8").splitlines()

    events = [json.loads(line) for line in main_lines]
    assert [event["event"] for event in events] == ["Scan completed", "Scan failed"]
    assert events[0]["component"] == "test"
    assert events[0]["risk"] == "high"
    assert events[0]["level"] == "info"
    assert "timestamp" in events[0]

    assert [json.loads(line)["event"] for line in error_lines] == ["Scan failed"]
