"""
mother_registry.security: Request plumbing shared by every route.

JSON logs tagged with a per-request id, x-api-key auth against the rotating
key set, slowapi limits on minting routes, and the handlers that render
failures as ``{"success": false, "error": ..., "message": ...}``.
"""

import hmac
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Optional, TextIO

from fastapi import FastAPI, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from mother_registry.config import load_api_keys
from mother_registry.errors import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ServiceError,
)

LOGGER_NAME = "mother_registry"
REQUEST_ID_HEADER = "X-Request-ID"
API_KEY_HEADER = "x-api-key"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}

current_request_id: ContextVar[str] = ContextVar("current_request_id", default="-")


# ─── Logging ──────────────────────────────────────────────────────

class RequestIdFilter(logging.Filter):
    """Stamp every record with the id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = current_request_id.get()
        return True


def setup_structured_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> logging.Logger:
    """Attach one JSON handler to the package logger; later calls only adjust the level."""
    from pythonjsonlogger.json import JsonFormatter

    pkg_logger = logging.getLogger(LOGGER_NAME)
    pkg_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if any(isinstance(h.formatter, JsonFormatter) for h in pkg_logger.handlers):
        return pkg_logger

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(request_id)s %(message)s",
        rename_fields={"asctime": "ts", "levelname": "level", "name": "logger"},
    ))
    handler.addFilter(RequestIdFilter())
    pkg_logger.addHandler(handler)
    return pkg_logger


logger = setup_structured_logging()


# ─── Rate limiting ────────────────────────────────────────────────

limiter = Limiter(key_func=get_remote_address)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Mint rate limit hit on %s", request.url.path,
                   extra={"event": "rate_limited", "limit": str(exc.detail)})
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": "Too many requests",
                 "message": f"Rate limit of {exc.detail} exceeded, retry later"},
    )


# ─── API key ──────────────────────────────────────────────────────

api_key_scheme = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def require_api_key(request: Request,
                          presented: Optional[str] = Security(api_key_scheme)) -> str:
    """Accept the request only if ``x-api-key`` matches a configured key.

    No configured keys at all is a server misconfiguration (500), a missing
    header is 401 and an unknown key is 403. Keys are re-read on every call.
    """
    accepted = load_api_keys()
    if not accepted:
        logger.error("No API keys configured (API_KEY, API_KEY_n or API_KEYS)")
        raise ConfigurationError("API authentication not configured")

    if not presented:
        logger.warning("Missing API key from %s on %s", _client_ip(request), request.url.path,
                       extra={"event": "auth_failure", "reason": "missing"})
        raise AuthenticationError(f"API key is required. Please provide '{API_KEY_HEADER}' header")

    if not any(hmac.compare_digest(presented.encode(), key.encode()) for key in accepted):
        logger.warning("Rejected API key %s... from %s on %s",
                       presented[:4], _client_ip(request), request.url.path,
                       extra={"event": "auth_failure", "reason": "invalid"})
        raise AuthorizationError("Invalid API key")
    return presented


# ─── Per-request context ──────────────────────────────────────────

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id for logging, time the request and set response headers."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        token = current_request_id.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            logger.info(
                "%s %s -> %d", request.method, request.url.path, response.status_code,
                extra={"elapsed_ms": round((time.perf_counter() - started) * 1000, 1),
                       "client": _client_ip(request)},
            )
        finally:
            current_request_id.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers.update(SECURITY_HEADERS)
        return response


# ─── Error rendering ──────────────────────────────────────────────

async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.error, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid payload", "message": problems},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error",
                 "message": "An unexpected error occurred"},
    )


async def not_found_handler(request: Request, exc) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"success": False, "error": "Not found",
                 "message": f"Route {request.method} {request.url.path} not found"},
    )


def apply_security(app: FastAPI, allowed_origins: Optional[list[str]] = None) -> None:
    """Install middleware, the limiter and every error handler on ``app``."""
    app.state.limiter = limiter
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", API_KEY_HEADER, REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(404, not_found_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
