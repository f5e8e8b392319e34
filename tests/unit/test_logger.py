import logging

import structlog

from src.utils.logger import LogContext, get_logger, setup_logging


def test_setup_logging():
    # Calling it shouldn't crash
    setup_logging(level="DEBUG", json_format=False)
    setup_logging(level="INFO", json_format=True)
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_with_file(tmp_path):
    log_file = tmp_path / "pipeline.log"
    setup_logging(level="WARNING", json_format=True, log_file=str(log_file))
    assert any(isinstance(h, logging.FileHandler) for h in logging.getLogger().handlers)
    for handler in list(logging.getLogger().handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            logging.getLogger().removeHandler(handler)


def test_get_logger():
    logger = get_logger("test_module")
    assert logger is not None
    # Test logging doesn't crash
    logger.info("test message", key="value")


def test_log_context_binds_and_resets():
    with LogContext(request_id="req-123", stage="triage"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["request_id"] == "req-123"
        assert bound["stage"] == "triage"
    assert "request_id" not in structlog.contextvars.get_contextvars()


def test_log_context_nesting_restores_outer_value():
    with LogContext(stage="evidence"):
        with LogContext(stage="candidates"):
            assert structlog.contextvars.get_contextvars()["stage"] == "candidates"
        assert structlog.contextvars.get_contextvars()["stage"] == "evidence"
