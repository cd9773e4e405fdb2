import logging

from chatrelay.observability.logging import format_event, log_event
from chatrelay.util import logger as logger_module
from chatrelay.util.logger import logger


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_format_event_puts_request_fields_first():
    line = format_event(
        "chat_stream_finished",
        request_id="abc",
        provider="gemini",
        outcome="completed",
        frames=3,
        duration_ms=12,
    )
    assert line == "chat_stream_finished request_id=abc provider=gemini outcome=completed frames=3 duration_ms=12"


def test_format_event_quotes_values_with_spaces():
    line = format_event("chat_reply", request_id="r", provider="openai", outcome="upstream_error", detail='bad "key" here')
    assert line.endswith('detail="bad \\"key\\" here"')


def test_log_event_level_follows_outcome():
    handler = _ListHandler()
    previous_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        log_event("chat_reply", request_id="r1", provider="qwen", outcome="completed")
        log_event("chat_stream_finished", request_id="r2", provider="qwen", outcome="cancelled")
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous_level)

    assert [record.levelno for record in handler.records] == [logging.INFO, logging.WARNING]
    assert handler.records[1].getMessage().startswith("chat_stream_finished request_id=r2")


def test_file_handler_follows_configured_path(tmp_path):
    formatter = logging.Formatter("%(message)s")
    assert logger_module._file_handler("", logging.INFO, formatter) is None

    handler = logger_module._file_handler(str(tmp_path / "nested" / "relay.log"), logging.INFO, formatter)
    try:
        assert handler is not None
        assert (tmp_path / "nested").is_dir()
    finally:
        handler.close()


def test_file_handler_degrades_to_stderr_when_path_is_unwritable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    handler = logger_module._file_handler(str(blocker / "relay.log"), logging.INFO, logging.Formatter())
    assert handler is None


def test_normalize_level_falls_back_to_info():
    assert logger_module._normalize_level("debug") == logging.DEBUG
    assert logger_module._normalize_level("nonsense") == logging.INFO
