"""Structured JSON logging with request context and redaction."""

import json
import logging
from io import StringIO

import pytest

from crux_api.context import request_id_var, tenant_id_var, user_id_var
from crux_api.utils.logging import JSONFormatter, configure_json_logging


@pytest.fixture
def capture():
    logger = logging.getLogger("test_crux_json")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)

    def read() -> dict:
        return json.loads(stream.getvalue().strip().splitlines()[-1])

    yield logger, read
    logger.handlers.clear()


def test_context_vars_are_included(capture) -> None:
    logger, read = capture
    request_id_var.set("req_123")
    tenant_id_var.set("tenant_xyz")
    user_id_var.set("user_abc")

    logger.info("Test message")

    data = read()
    assert data["message"] == "Test message"
    assert data["request_id"] == "req_123"
    assert data["tenant_id"] == "tenant_xyz"
    assert data["user_id"] == "user_abc"


def test_missing_context_is_omitted(capture) -> None:
    logger, read = capture
    request_id_var.set("")
    tenant_id_var.set("")
    user_id_var.set("")

    logger.info("Background task message")

    data = read()
    assert "tenant_id" not in data
    assert "request_id" not in data


def test_extra_fields_are_redacted(capture) -> None:
    logger, read = capture

    logger.info(
        "Invitation issued",
        extra={
            "event": "invitation.issued",
            "invitee_email": "bob@example.com",
            "token": "super-secret-token",
            "link": "https://app.example/auth/accept?token=abc123&type=invite",
        },
    )

    data = read()
    assert data["event"] == "invitation.issued"
    assert data["invitee_email"] == "b***@example.com"
    assert data["token"] == "[REDACTED]"
    assert "abc123" not in data["link"]


def test_exception_info_is_included(capture) -> None:
    logger, read = capture

    try:
        raise ValueError("Bearer eyJ.secret.value failed")
    except ValueError:
        logger.error("Exception occurred", exc_info=True)

    data = read()
    assert "Traceback" in data["exc_info"]
    assert "eyJ.secret.value" not in data["exc_info"]


def test_configure_json_logging_sets_json_formatter() -> None:
    configure_json_logging(log_level="INFO")

    root_logger = logging.getLogger()
    assert len(root_logger.handlers) > 0
    assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)
