"""
Tests for structured logging helpers.
"""

from shared.logging import (
    add_correlation_context,
    add_service_context,
    clear_context,
    set_client_context,
    set_request_id,
)


def test_set_request_id_generates_when_missing():
    request_id = set_request_id()
    try:
        assert request_id
        assert add_correlation_context(None, "info", {})["request_id"] == request_id
    finally:
        clear_context()


def test_correlation_context_includes_client():
    set_request_id("req-1")
    set_client_context("10.0.0.5")
    try:
        event = add_correlation_context(None, "info", {"event": "x"})
    finally:
        clear_context()

    assert event == {"event": "x", "request_id": "req-1", "client_id": "10.0.0.5"}
    assert add_correlation_context(None, "info", {}) == {}


def test_service_taken_from_logger_name():
    assert add_service_context(None, "info", {"logger": "proxy.dispatcher"})["service"] == "proxy"
    assert "service" not in add_service_context(None, "info", {"logger": "root"})
