"""Tests for loguru sink setup."""

from __future__ import annotations

from loguru import logger

from opencontext.log import setup_logging


def test_file_sink_receives_messages(tmp_path):
    log_file = tmp_path / "logs" / "opencontext.log"
    setup_logging("INFO", str(log_file))
    try:
        logger.info("Document uploaded | document_id=abc")
        logger.debug("hidden below INFO")
    finally:
        # remove() drains the enqueued file sink
        logger.remove()

    text = log_file.read_text(encoding="utf-8")
    assert "Document uploaded | document_id=abc" in text
    assert "hidden below INFO" not in text
    assert "| INFO     |" in text


def test_console_only_by_default(tmp_path, capsys):
    setup_logging("WARNING")
    try:
        logger.warning("queue full")
        logger.info("not shown")
    finally:
        logger.remove()
    err = capsys.readouterr().err
    assert "queue full" in err
    assert "not shown" not in err
