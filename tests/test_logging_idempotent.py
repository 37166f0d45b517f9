import logging
import os
import sys

from sportswriter.utils import configure_logging, log_event


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "logs" / "app.log"
    monkeypatch.setenv("SW_LOG_LEVEL", "INFO")
    monkeypatch.setenv("SW_LOG_FILE", str(log_file))

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        root.handlers = []
        configure_logging("sportswriter.worker")
        configure_logging("sportswriter.worker")

        file_handlers = [
            handler for handler in root.handlers if isinstance(handler, logging.FileHandler)
        ]
        stream_handlers = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.StreamHandler)
            and not isinstance(handler, logging.FileHandler)
        ]

        assert len(stream_handlers) == 1
        assert stream_handlers[0].stream is sys.stdout
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(
            str(log_file)
        )
    finally:
        for handler in root.handlers:
            if handler not in original_handlers and isinstance(handler, logging.FileHandler):
                handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)


def test_log_levels_override(monkeypatch):
    monkeypatch.setenv("SW_LOG_LEVELS", "sportswriter.storage=DEBUG, bogus")
    target = logging.getLogger("sportswriter.storage")
    original = target.level
    try:
        configure_logging("sportswriter.cli")
        assert target.level == logging.DEBUG
    finally:
        target.setLevel(original)


def test_log_event_formats_key_values(caplog):
    logger = logging.getLogger("sportswriter.test")
    with caplog.at_level(logging.INFO, logger="sportswriter.test"):
        log_event(logger, logging.INFO, "match_completed", match_code="M1", article_id=None)
    assert "event=match_completed match_code=M1 article_id=None" in caplog.text


def test_log_event_quotes_values_with_spaces(caplog):
    logger = logging.getLogger("sportswriter.test")
    with caplog.at_level(logging.INFO, logger="sportswriter.test"):
        log_event(
            logger,
            logging.ERROR,
            "ingest_aborted",
            error="http_error 500",
            selected=[1, 2],
            hint="",
        )
    assert 'event=ingest_aborted error="http_error 500" selected=1,2 hint=""' in caplog.text
