"""
Tests for the event logging helpers (logger.py)
"""
import json
import logging

from logger import get_log_dir, get_logger, log_event, log_json, log_metrics, log_performance


def _records(caplog):
    return [r.getMessage() for r in caplog.records if r.name == "listing"]


def test_log_dir_follows_env(tmp_path, monkeypatch):
    monkeypatch.setenv("LISTING_LOG_DIR", str(tmp_path / "logs"))
    assert get_log_dir() == str(tmp_path / "logs")
    assert (tmp_path / "logs").is_dir()


def test_handlers_attached_once():
    first = get_logger()
    count = len(first.handlers)
    assert get_logger() is first
    assert len(first.handlers) == count


def test_event_line(caplog):
    with caplog.at_level(logging.INFO, logger="listing"):
        log_event("REPAIR_TARGETED", "description of variant B")
    assert "[REPAIR_TARGETED] description of variant B" in _records(caplog)


def test_json_records(caplog):
    with caplog.at_level(logging.INFO, logger="listing"):
        log_json("GENERATE_DONE", "listing generated", profile="standard", passes=["ok"])
        log_metrics("BACKEND_USAGE", {"output_tokens": 812})
        log_performance("STAGE_REPAIR_FULL", 1234.5678, violations_before=3)
    done, usage, perf = [json.loads(m) for m in _records(caplog)[-3:]]
    assert done["event"] == "GENERATE_DONE"
    assert done["profile"] == "standard"
    assert done["passes"] == ["ok"]
    assert usage["type"] == "metrics"
    assert usage["metrics"] == {"output_tokens": 812}
    assert perf["duration_ms"] == 1234.57
    assert perf["violations_before"] == 3
