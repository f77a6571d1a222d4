"""Logging redaction middleware.

Authorization headers, session cookies, and invitation/session tokens in
query strings never appear in plain text in logs. The request itself is left
untouched; handlers that log request data use get_safe_headers() and
get_safe_query() instead of reading the raw request.

Usage:
    app.add_middleware(LoggingRedactionMiddleware)
"""

import logging
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REDACTED_PLACEHOLDER = "[REDACTED]"

SENSITIVE_HEADERS = frozenset({"authorization", "proxy-authorization", "cookie", "set-cookie", "apikey"})

# Invitation links carry these in the query string
SENSITIVE_QUERY_PARAMS = frozenset({"token", "token_hash", "access_token", "refresh_token", "code"})


def _redact_headers(request: Request) -> dict[str, str]:
    return {
        name: REDACTED_PLACEHOLDER if name.lower() in SENSITIVE_HEADERS else value
        for name, value in request.headers.items()
    }


def _redact_query(request: Request) -> dict[str, str]:
    return {
        name: REDACTED_PLACEHOLDER if name.lower() in SENSITIVE_QUERY_PARAMS else value
        for name, value in request.query_params.items()
    }


class LoggingRedactionMiddleware(BaseHTTPMiddleware):
    """Stores redacted copies of headers and query params on request.state."""

    def __init__(self, app):
        super().__init__(app)
        logger.info(
            "LoggingRedactionMiddleware initialized",
            extra={
                "event": "middleware.logging_redaction.init",
                "redacted_headers": sorted(SENSITIVE_HEADERS),
                "redacted_query_params": sorted(SENSITIVE_QUERY_PARAMS),
            },
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.redacted_headers = _redact_headers(request)
        request.state.redacted_query = _redact_query(request)
        request.state.logging_redaction_applied = True
        return await call_next(request)


def get_safe_headers(request: Request) -> dict[str, str]:
    """Headers safe for logging.

    Example:
        logger.info("Request headers", extra={"headers": get_safe_headers(request)})
    """
    if hasattr(request.state, "redacted_headers"):
        return request.state.redacted_headers
    return _redact_headers(request)


def get_safe_query(request: Request) -> dict[str, str]:
    """Query parameters safe for logging."""
    if hasattr(request.state, "redacted_query"):
        return request.state.redacted_query
    return _redact_query(request)
