from __future__ import annotations

import json
import logging
import sys

from pathScope.logging_config import (
    ContextAdapter,
    JSONLFormatter,
    get_logger,
    reset_request_id,
    sanitize_log_data,
    set_request_id,
    setup_logging,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("pathscope.test", logging.INFO, __file__, 10, "Probe finished", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_jsonl_formatter_structured_fields() -> None:
    formatter = JSONLFormatter(component="sampler")

    line = formatter.format(_record(target="origin", duration=12.5, outcome="success", ignored="x"))
    data = json.loads(line)

    assert data["component"] == "sampler"
    assert data["level"] == "INFO"
    assert data["message"] == "Probe finished"
    assert data["target"] == "origin"
    assert data["duration"] == 12.5
    assert data["outcome"] == "success"
    assert "ignored" not in data
    assert data["timestamp"].endswith("Z")


def test_jsonl_formatter_extra_fields_and_request_id() -> None:
    formatter = JSONLFormatter()
    token = set_request_id("req-7")
    try:
        data = json.loads(formatter.format(_record(extra_fields={"tasks": ["latency"]})))
    finally:
        reset_request_id(token)

    assert data["request_id"] == "req-7"
    assert data["tasks"] == ["latency"]
    assert "request_id" not in json.loads(formatter.format(_record()))


def test_jsonl_formatter_exception() -> None:
    formatter = JSONLFormatter()
    try:
        raise ValueError("bad prefix")
    except ValueError:
        record = logging.LogRecord("pathscope.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

    data = json.loads(formatter.format(record))

    assert data["exception"]["type"] == "ValueError"
    assert data["exception"]["message"] == "bad prefix"


def test_setup_logging_writes_jsonl(tmp_path) -> None:
    log_file = tmp_path / "out.jsonl"
    logger = setup_logging("logtest", log_level="INFO", log_file=str(log_file), enable_console=False)

    logger.info("hello", extra={"domain": "example.com"})
    for handler in logger.handlers:
        handler.flush()

    lines = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert lines[-1]["message"] == "hello"
    assert lines[-1]["domain"] == "example.com"
    assert lines[-1]["component"] == "logtest"


def test_get_logger_with_context() -> None:
    logger = get_logger("ctx", context={"target": "edge"})

    assert isinstance(logger, ContextAdapter)
    assert get_logger("ctx") is logging.getLogger("pathscope.ctx")


def test_sensitive_data_redaction() -> None:
    data = {
        "probe": {"api_token": "abc", "user_agent": "pathScope/0.1"},
        "password": "hunter2",
        "targets": [{"name": "origin", "secret": "s"}],
    }

    sanitized = sanitize_log_data(data)

    assert sanitized["probe"]["api_token"] == "***REDACTED***"
    assert sanitized["probe"]["user_agent"] == "pathScope/0.1"
    assert sanitized["password"] == "***REDACTED***"
    assert sanitized["targets"][0] == {"name": "origin", "secret": "***REDACTED***"}


def test_context_adapter_merges_call_site_extra() -> None:
    adapter = ContextAdapter(logging.getLogger("pathscope.ctx"), {"target": "edge"})

    msg, kwargs = adapter.process("latency timed out", {"extra": {"outcome": "error"}})
    _, bare = adapter.process("latency ok", {})

    assert msg == "latency timed out"
    assert kwargs["extra"] == {"outcome": "error", "target": "edge"}
    assert bare["extra"] == {"target": "edge"}
