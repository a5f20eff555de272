"""Unit tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
import threading

import pytest

from shared.logging import configure_logging, current_fields, log_context
from shared.logging import fields as log_fields


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_output_includes_bound_context(capsys) -> None:
    """JSON lines carry the core fields plus bound correlation fields."""
    configure_logging(level="INFO", json_output=True, service="lazyfill-test")

    with log_context({log_fields.AUTOFILL_ID: "a1", log_fields.USER_ID: None}):
        logging.getLogger("lazyfill.test").info("Autofill committed: credits=%s", 3)

    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload[log_fields.MESSAGE] == "Autofill committed: credits=3"
    assert payload[log_fields.LEVEL] == "INFO"
    assert payload[log_fields.AUTOFILL_ID] == "a1"
    assert payload[log_fields.SERVICE] == "lazyfill-test"
    assert log_fields.USER_ID not in payload


def test_plain_output_appends_context(capsys) -> None:
    """Plain lines end with sorted key=value context."""
    configure_logging(level="DEBUG", json_output=False)

    with log_context({log_fields.LOG_ID: "l1", log_fields.WORKER: "dispatcher-0"}):
        logging.getLogger("lazyfill.test").debug("Outbox entry delivered")

    line = capsys.readouterr().out.strip().splitlines()[-1]
    assert "Outbox entry delivered" in line
    assert line.endswith("log_id=l1 worker=dispatcher-0")


def test_service_is_stamped_on_records_from_other_threads(capsys) -> None:
    """Dispatcher threads start with an empty context but still name the service."""
    configure_logging(level="INFO", json_output=True, service="lazyfill-worker")

    thread = threading.Thread(
        target=lambda: logging.getLogger("outbox.dispatcher").info("Outbox dispatcher started")
    )
    thread.start()
    thread.join()

    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload[log_fields.SERVICE] == "lazyfill-worker"


def test_log_context_is_scoped() -> None:
    """Bound values disappear when the block exits."""
    with log_context({log_fields.STAGE: "classify"}):
        with log_context({log_fields.STAGE: "infer"}):
            assert current_fields()[log_fields.STAGE] == "infer"
        assert current_fields()[log_fields.STAGE] == "classify"

    assert log_fields.STAGE not in current_fields()


def test_reconfiguring_does_not_duplicate_handlers() -> None:
    """Repeated configuration keeps a single root handler."""
    configure_logging(json_output=False)
    configure_logging(json_output=True)

    assert len(logging.getLogger().handlers) == 1
