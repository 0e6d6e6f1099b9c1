"""
Tests for the JSON logging setup.
"""
import json
import logging
from contextlib import contextmanager

import pytest
import structlog

from evently.monitoring.logging import setup_logging


@contextmanager
def json_logging(capsys):
    """Run ``setup_logging`` and restore the previous logging state afterwards."""
    root_logger = logging.getLogger()
    saved_handlers = root_logger.handlers[:]
    saved_level = root_logger.level
    saved_config = structlog.get_config()

    setup_logging()
    capsys.readouterr()
    try:
        yield
    finally:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        for handler in saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(saved_level)
        structlog.contextvars.clear_contextvars()
        structlog.configure(**saved_config)


def _lines(capsys):
    return [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]


@pytest.mark.unit
def test_structlog_events_render_as_flat_json(capsys):
    with json_logging(capsys):
        structlog.contextvars.bind_contextvars(request_id="req-123")
        structlog.get_logger("evently.tests").warning(
            "seat_reservation_capacity_exceeded", seats=2
        )
        [record] = _lines(capsys)

    assert record["event"] == "seat_reservation_capacity_exceeded"
    assert record["level"] == "WARNING"
    assert record["logger"] == "evently.tests"
    assert record["timestamp"]
    assert record["seats"] == 2
    assert record["request_id"] == "req-123"
    assert record["app_name"] == "evently-registration"


@pytest.mark.unit
def test_stdlib_loggers_share_the_format(capsys):
    with json_logging(capsys):
        logging.getLogger("evently.workers.stdlib").error("worker boot failed")
        [record] = _lines(capsys)

    assert record["event"] == "worker boot failed"
    assert record["level"] == "ERROR"
    assert record["logger"] == "evently.workers.stdlib"


@pytest.mark.unit
def test_exceptions_are_rendered_into_the_line(capsys):
    with json_logging(capsys):
        try:
            raise RuntimeError("db blip")
        except RuntimeError:
            structlog.get_logger("evently.tests").exception("unhandled_exception")
        [record] = _lines(capsys)

    assert record["event"] == "unhandled_exception"
    assert "RuntimeError: db blip" in record["exception"]
