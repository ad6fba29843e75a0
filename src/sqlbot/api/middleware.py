"""
HTTP middleware and exception handlers for the SQLBot API.

Every response carries the request's trace id in X-Trace-ID, and every
error, whatever raised it, is returned as an ErrorResponse body:
- SQLBotException subclasses use their own http_status and error_code
- request validation failures become 422 with per-field details
- anything unexpected becomes a generic 500 and is logged with its stack

Pipeline failures inside a chat turn are not errors at this level; the
chat route answers them with an assistant message.
"""

from datetime import datetime, timezone
from typing import Callable, Dict

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..domain.errors import SQLBotException
from ..domain.responses import ErrorResponse
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id, generate_trace_id, set_trace_id

logger = get_module_logger()

TRACE_HEADER = "X-Trace-ID"


async def trace_id_middleware(request: Request, call_next: Callable) -> Response:
    """Adopt the caller's X-Trace-ID (or mint one) for the whole request."""
    trace_id = request.headers.get(TRACE_HEADER) or generate_trace_id()
    set_trace_id(trace_id)

    response = await call_next(request)
    response.headers[TRACE_HEADER] = trace_id
    return response


async def logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log request start and completion; X-Process-Time is the duration in ms."""
    started = datetime.now(timezone.utc)
    trace_id = current_trace_id()
    logger.info(
        "HTTP request started",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
        trace_id=trace_id,
    )

    response = await call_next(request)

    duration_ms = round((datetime.now(timezone.utc) - started).total_seconds() * 1000, 2)
    response.headers["X-Process-Time"] = str(duration_ms)
    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=duration_ms,
        trace_id=trace_id,
    )
    return response


# =============================================================================
# Exception Handlers
# =============================================================================

# Status codes without a domain exception behind them
HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    503: "service_unavailable",
}


def _error_response(status_code: int, error: str, message: str, details: Dict | None = None) -> JSONResponse:
    """
    Build the JSON body shared by every error:
    {"error", "message", "details"?, "trace_id", "timestamp"}.
    """
    trace_id = current_trace_id()
    body = ErrorResponse(
        error=error.lower(),
        message=message,
        details=details,
        trace_id=trace_id,
        timestamp=datetime.now(timezone.utc),
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers={TRACE_HEADER: trace_id} if trace_id else None,
    )


def _log_failure(request: Request, status_code: int, event: str, **fields) -> None:
    # Client mistakes are warnings; anything server-side is an error
    log = logger.warning if status_code < 500 else logger.error
    log(
        event,
        http_status=status_code,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id(),
        **fields,
    )


async def sqlbot_exception_handler(request: Request, exc: SQLBotException) -> JSONResponse:
    """Domain errors carry their own status, code and details."""
    _log_failure(request, exc.http_status, type(exc).__name__, **exc.to_dict())
    return _error_response(exc.http_status, exc.error_code, exc.message, exc.details or None)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/query validation: 422 with one entry per failing field."""
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]
    _log_failure(request, 422, "Request validation failed", errors=errors)
    return _error_response(422, "validation_error", "Request validation failed", {"errors": errors})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (unknown path, wrong method) keep their status code."""
    _log_failure(request, exc.status_code, f"HTTP {exc.status_code}: {exc.detail}")
    return _error_response(
        exc.status_code,
        HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
        str(exc.detail) if exc.detail else f"HTTP {exc.status_code} error",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected failures: full trace in the log, a generic 500 to the caller."""
    logger.error(
        "Unhandled exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        trace_id=current_trace_id(),
        exc_info=True,
    )
    return _error_response(500, "internal_error", "An internal server error occurred. Please try again later.")


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the handlers; the most specific exception class wins, so
    SQLBotException subclasses never reach the generic fallback.
    """
    app.add_exception_handler(SQLBotException, sqlbot_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)


# =============================================================================
# OpenAPI error documentation
# =============================================================================

def _documented(description: str, error: str, message: str) -> Dict:
    example = {
        "error": error,
        "message": message,
        "trace_id": "3f2b8c1e-7a4d-4e0f-9b6a-2d5c8e1f0a9b",
        "timestamp": "2025-03-02T08:15:00Z",
    }
    return {"description": description, "content": {"application/json": {"example": example}}}


ERROR_RESPONSES = {
    400: _documented("A schema sync is already running", "bad_request",
                     "Schema sync already running for data source 7"),
    403: _documented("The SQL violates the read-only policy", "security_error",
                     "Only SELECT statements are allowed"),
    404: _documented("Unknown session, data source, term or example", "not_found",
                     "Chat session 3 not found"),
    422: _documented("Invalid request body or parameters", "validation_error",
                     "Request validation failed"),
    500: _documented("Unexpected server failure", "internal_error",
                     "An internal server error occurred. Please try again later."),
    503: _documented("The LLM, embedding or vector provider is unavailable", "llm_error",
                     "LLM API key is not configured"),
}
