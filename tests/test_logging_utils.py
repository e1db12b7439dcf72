import logging
import uuid

from src.backend.logging_utils import (
    JsonFormatter,
    build_formatter,
    clear_log_context,
    current_log_context,
    get_logger,
    log_context,
    LoggingContextFilter,
    set_log_context,
    summarize_payload,
)
from src.api.importer import ScoreFile


def _has_file_handler(logger: logging.Logger) -> bool:
    return any(isinstance(handler, logging.FileHandler) for handler in logger.handlers)


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test_path.py",
        lineno=12,
        msg=msg,
        args=(),
        exc_info=None,
        func="test_func",
    )


def test_get_logger_in_prod_has_no_file_handler(monkeypatch):
    monkeypatch.setenv("APP_ENV", "prod")
    logger = get_logger(f"test_logger_prod_{uuid.uuid4().hex}")
    assert not _has_file_handler(logger)


def test_get_logger_in_dev_has_file_handler(monkeypatch, tmp_path):
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    logger_name = f"test_logger_dev_{uuid.uuid4().hex}"
    logger = get_logger(logger_name)
    assert _has_file_handler(logger)
    assert (tmp_path / f"{logger_name}.log").exists()


def test_log_format_includes_context_fields(monkeypatch):
    monkeypatch.delenv("LOG_JSON", raising=False)
    monkeypatch.delenv("LOG_FORMAT", raising=False)
    formatter = build_formatter()
    record = _record()
    set_log_context(request_id="r1", job_id="j1", project="Demo")
    try:
        LoggingContextFilter().filter(record)
        formatted = formatter.format(record)
    finally:
        clear_log_context()
    assert "request_id=r1" in formatted
    assert "job_id=j1" in formatted
    assert "project=Demo" in formatted


def test_json_format_includes_context_fields(monkeypatch):
    monkeypatch.setenv("LOG_FORMAT", "json")
    formatter = build_formatter()
    assert isinstance(formatter, JsonFormatter)
    record = _record()
    set_log_context(request_id="r1", job_id="j1", project="Demo")
    try:
        LoggingContextFilter().filter(record)
        formatted = formatter.format(record)
    finally:
        clear_log_context()
    assert '"request_id": "r1"' in formatted
    assert '"job_id": "j1"' in formatted
    assert '"project": "Demo"' in formatted


def test_clear_log_context_resets_fields():
    set_log_context(job_id="j9")
    clear_log_context()
    record = _record()
    LoggingContextFilter().filter(record)
    assert record.job_id == "-"
    assert record.request_id == "-"


def test_log_context_restores_previous_values():
    clear_log_context()
    set_log_context(request_id="outer")
    try:
        with log_context(job_id="inner-job", project="Demo"):
            inside = current_log_context()
        after = current_log_context()
    finally:
        clear_log_context()
    assert inside == {"request_id": "outer", "job_id": "inner-job", "project": "Demo"}
    assert after == {"request_id": "outer", "job_id": "-", "project": "-"}


def test_summarize_payload_handles_dataclasses_and_bytes():
    summary = summarize_payload(ScoreFile(name="duet.mid", data=b"\x00" * 64))
    assert summary == {"name": "duet.mid", "data": {"__bytes__": 64}}


def test_summarize_payload_truncates_long_values():
    summary = summarize_payload({"items": list(range(50)), "text": "x" * 500})
    assert summary["items"]["__len__"] == 50
    assert len(summary["items"]["sample"]) == 5
    assert summary["text"].endswith("...(truncated)")


def test_prod_env_logs_propagate_to_stdout(caplog, monkeypatch):
    monkeypatch.setenv("APP_ENV", "prod")
    logger = get_logger(f"test_logger_prod_emit_{uuid.uuid4().hex}")
    assert not _has_file_handler(logger)
    assert logger.propagate is True

    caplog.set_level(logging.INFO)
    logger.info("prod_log_test")
    assert any(record.message == "prod_log_test" for record in caplog.records)
