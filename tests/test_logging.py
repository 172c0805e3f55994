"""Secret redaction in logs."""

import json
import logging

import pytest

from logisync.core.logging import (
    SecureLogFilter,
    SecureRotatingFileHandler,
    StructuredLogFormatter,
    get_secure_logger,
)


def _record(msg, *args):
    return logging.LogRecord("logisync.test", logging.INFO, __file__, 1, msg, args, None)


@pytest.mark.parametrize(
    "message",
    [
        "login with password=Abcdef1@",
        "reset token: 9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08",
        "stored $argon2id$v=19$m=1024,t=1,p=1$c2FsdHNhbHQ$aGFzaGhhc2g",
        "Authorization bearer=abc.def.ghi",
    ],
)
def test_filter_redacts_secrets(message):
    record = _record(message)
    assert SecureLogFilter().filter(record)
    assert "[REDACTED]" in record.getMessage()


def test_filter_redacts_arguments():
    token = "ab" * 32
    record = _record("Issued %s for %s", token, "7")
    SecureLogFilter().filter(record)

    message = record.getMessage()
    assert token not in message
    assert message.endswith("for 7")


def test_plain_messages_pass_unchanged():
    record = _record("Cleaned up %d expired reset tokens", 3)
    SecureLogFilter().filter(record)
    assert record.getMessage() == "Cleaned up 3 expired reset tokens"


def test_json_formatter_emits_one_object():
    line = StructuredLogFormatter().format(_record("hello %s", "world"))
    data = json.loads(line)
    assert data["message"] == "hello world"
    assert data["level"] == "INFO"


def test_file_handler_rejects_traversal(tmp_path):
    with pytest.raises(ValueError):
        SecureRotatingFileHandler(tmp_path / ".." / "escape.log")


def test_file_logger_writes_redacted_output(tmp_path):
    logger = get_secure_logger(
        "logisync.test_file_logger",
        log_dir=tmp_path,
        enable_console=False,
        enable_file=True,
    )
    logger.info("user set password=Abcdef1@")
    for handler in logger.handlers:
        handler.flush()

    content = (tmp_path / "logisync_test_file_logger.log").read_text()
    assert "Abcdef1@" not in content
    assert "[REDACTED]" in content

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
