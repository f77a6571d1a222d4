"""Crux API - FastAPI Application Entry Point."""

import logging
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from crux_api.config.env import (
    get_api_host,
    get_api_port,
    get_cors_allowed_origins,
    get_log_level,
    get_public_entry_path,
    json_logs_enabled,
)
from crux_api.context import request_id_var, tenant_id_var, user_id_var
from crux_api.errors import AccessDenied, CruxError, InvitationInvalid, TransportError, Unauthenticated
from crux_api.middleware import LoggingRedactionMiddleware, get_safe_headers
from crux_api.routers import (
    audit_logs,
    auth,
    entry,
    health,
    invitations,
    invoices,
    master,
    members,
    public,
    reviews,
    settings,
)
from crux_api.schemas import ProblemDetail
from crux_api.utils import configure_json_logging

PROBLEM_TYPE_BASE = "https://crux.app/problems"
TRANSPORT_RETRY_AFTER_SECONDS = 5

app = FastAPI(
    title="Crux API",
    description="Multi-tenant review and invoicing dashboard: sessions, invitations, role-guarded tenant data.",
    version="0.1.0",
    docs_url="/api-docs",
    redoc_url="/redoc",
)

# Set CRUX_JSON_LOGS=false to disable (defaults to true)
if json_logs_enabled():
    configure_json_logging(log_level=get_log_level())
    logger = logging.getLogger(__name__)
    logger.info("Structured JSON logging enabled")
else:
    logger = logging.getLogger(__name__)


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_allowed_origins(),  # Never "*" with credentials
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["Location", "Retry-After", "X-Request-ID"],
)

app.add_middleware(LoggingRedactionMiddleware)


@app.middleware("http")
async def http_completion_logging_middleware(request: Request, call_next):
    """Log every HTTP request completion.

    - Every request emits "http.request.completed" with method, path,
      status_code and duration_ms (query strings are never logged)
    - Per-request contextvars are cleared at start and end
    - Logs even on exceptions (status_code=500)
    """
    tenant_id_var.set("")
    user_id_var.set("")

    start_time = time.perf_counter()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logging.getLogger(__name__).info(
            "http.request.completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        tenant_id_var.set("")
        user_id_var.set("")


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Generate and propagate request_id (outermost middleware).

    Accepts X-Request-ID from the client, otherwise generates a UUID v4, and
    echoes it in the response headers.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request_id_var.set(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# RFC 9457 Global Exception Handlers
# ============================================================================


def _instance() -> str:
    request_id = request_id_var.get()
    return f"urn:crux:trace:{request_id}" if request_id else f"urn:crux:trace:{uuid.uuid4()}"


def _problem_response(problem: ProblemDetail, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers or {},
    )


def _is_navigation(request: Request) -> bool:
    """Browser page load, as opposed to an API call."""
    return request.method in ("GET", "HEAD") and "text/html" in request.headers.get("accept", "")


@app.exception_handler(CruxError)
async def crux_error_handler(request: Request, exc: CruxError) -> Response:
    """Render access-control errors.

    Unauthenticated/AccessDenied on a browser navigation become a 303 to
    the public entry; API callers get a neutral problem with a Location
    header. AccessDenied is a 404 so a route's existence is never confirmed.
    """
    headers: dict[str, str] = {}

    if isinstance(exc, (Unauthenticated, AccessDenied)):
        public_entry = get_public_entry_path()
        if _is_navigation(request) and request.url.path != public_entry:
            return RedirectResponse(public_entry, status_code=status.HTTP_303_SEE_OTHER)
        headers["Location"] = public_entry
        if isinstance(exc, Unauthenticated):
            headers["WWW-Authenticate"] = "Bearer"

    if isinstance(exc, TransportError):
        headers["Retry-After"] = str(TRANSPORT_RETRY_AFTER_SECONDS)
        logger.error(
            "Backend unavailable",
            exc_info=exc.__cause__ is not None,
            extra={"event": "backend.unavailable", "operation": exc.operation},
        )

    problem = ProblemDetail(
        type=f"{PROBLEM_TYPE_BASE}/{exc.slug}",
        title=exc.title,
        status=exc.status_code,
        detail=exc.detail,
        instance=_instance(),
        reason=exc.reason.value if isinstance(exc, InvitationInvalid) else None,
    )
    return _problem_response(problem, headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """HTTP exceptions (unknown routes, methods) as RFC 9457 problems."""
    detail_value = exc.detail if exc.detail is not None else _get_title_for_status(exc.status_code)
    problem = ProblemDetail(
        type=f"{PROBLEM_TYPE_BASE}/http-{exc.status_code}",
        title=_get_title_for_status(exc.status_code),
        status=exc.status_code,
        detail=detail_value,
        instance=_instance(),
    )
    return _problem_response(problem, dict(exc.headers or {}))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 Unprocessable Entity for malformed requests."""
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    msg = first_error.get("msg", "Validation error")

    problem = ProblemDetail(
        type=f"{PROBLEM_TYPE_BASE}/validation-error",
        title="Request Validation Failed",
        status=422,
        detail=f"Invalid field '{field}': {msg}",
        instance=_instance(),
    )
    return _problem_response(problem)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Uncaught exceptions: 500 with an opaque problem, details only in logs."""
    logger.error(
        "Unhandled exception",
        exc_info=True,
        extra={"event": "http.unhandled_exception", "path": request.url.path, "headers": get_safe_headers(request)},
    )
    problem = ProblemDetail(
        type=f"{PROBLEM_TYPE_BASE}/internal-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred. Please try again later.",
        instance=_instance(),
    )
    return _problem_response(problem)


def _get_title_for_status(status_code: int) -> str:
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        410: "Gone",
        429: "Too Many Requests",
        500: "Internal Server Error",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(entry.router)
app.include_router(auth.router)
app.include_router(auth.landing_router)
app.include_router(invitations.router)
app.include_router(master.router)
app.include_router(members.router)
app.include_router(reviews.router)
app.include_router(invoices.router)
app.include_router(settings.router)
app.include_router(audit_logs.router)
app.include_router(public.router)


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=get_api_host(), port=get_api_port(), log_config=None)


if __name__ == "__main__":
    run()
