import pytest

from sqlbot.utils.logging import _add_module_info, _redact_secrets, configure_logging, get_logger, get_module_logger
from sqlbot.utils.tracing import current_trace_id, generate_trace_id, get_trace_id, set_trace_id, trace_scope


def test_logger_configuration():
    configure_logging()
    logger = get_logger("test")
    assert logger is not None


def test_module_logger_is_available():
    assert get_module_logger() is not None


def test_trace_id_generation():
    trace_id = generate_trace_id()
    assert len(trace_id) == 36  # UUID format
    assert '-' in trace_id


def test_trace_id_context():
    test_id = "test-trace-123"
    set_trace_id(test_id)
    assert current_trace_id() == test_id
    assert get_trace_id() == test_id


def test_trace_scope_restores_previous_id():
    set_trace_id("request-trace")

    with trace_scope() as job_trace:
        assert job_trace != "request-trace"
        assert current_trace_id() == job_trace

    with trace_scope("explicit") as explicit:
        assert explicit == "explicit"

    assert current_trace_id() == "request-trace"


def test_module_info_shortens_project_loggers():
    event = _add_module_info(None, "info", {"logger": "sqlbot.services.chat_service"})
    assert event["module"] == "services.chat_service"

    event = _add_module_info(None, "info", {"logger": "uvicorn.error"})
    assert event["module"] == "uvicorn.error"


def test_secrets_are_redacted():
    event = _redact_secrets(None, "info", {
        "event": "Connecting",
        "password": "hunter2",
        "api_key": "sk-123",
        "host": "db.local",
        "data_source": {"username": "analyst", "password": "secret"},
    })

    assert event["password"] == "***"
    assert event["api_key"] == "***"
    assert event["host"] == "db.local"
    assert event["data_source"] == {"username": "analyst", "password": "***"}


def test_empty_secret_is_left_alone():
    event = _redact_secrets(None, "info", {"api_key": None})
    assert event["api_key"] is None
