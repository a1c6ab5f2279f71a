"""
mother_registry.errors: Error taxonomy shared by the pipeline and the API.

Every failure a route can report is a ServiceError carrying an HTTP status,
a short category (``error``) and a human-readable message. The API renders
them as ``{"success": false, "error": ..., "message": ...}``.
"""

from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, message: str, *, error: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.error, "message": self.message}


# ─── Validation (no remote call attempted) ────────────────────────

class InvalidPayloadError(ServiceError):
    status_code = 400
    error = "Invalid payload"


class InvalidUrlError(ServiceError):
    status_code = 400
    error = "Invalid URL"


class InvalidEventError(ServiceError):
    status_code = 400
    error = "Invalid event structure"


class UnknownEventTypeError(ServiceError):
    status_code = 400
    error = "Unknown event type"


class UnsupportedMediaTypeError(ServiceError):
    status_code = 415
    error = "Unsupported media type"


# ─── Upstream fetch ───────────────────────────────────────────────

class InvalidUpstreamContentError(ServiceError):
    status_code = 415
    error = "Invalid upstream content"


class UpstreamFetchError(ServiceError):
    status_code = 502
    error = "Upstream fetch failed"


class UpstreamTimeoutError(ServiceError):
    status_code = 504
    error = "Upstream timeout"


# ─── Auth ─────────────────────────────────────────────────────────

class AuthenticationError(ServiceError):
    status_code = 401
    error = "Unauthorized"


class AuthorizationError(ServiceError):
    status_code = 403
    error = "Forbidden"


# ─── Lookup / configuration / remote failures ─────────────────────

class NotFoundError(ServiceError):
    status_code = 404
    error = "Agent not found"


class ConfigurationError(ServiceError):
    status_code = 500
    error = "Server configuration error"


class SyncError(ServiceError):
    status_code = 500
    error = "Sync failed"


class RegistryError(ServiceError):
    """Raised by the registry client when the gateway reports a failure.

    ``cause_message`` holds the nested cause reported by the ledger SDK
    (revert reasons usually live there).
    """

    status_code = 500
    error = "Registry request failed"

    def __init__(self, message: str, *, cause_message: str = "",
                 upstream_status: Optional[int] = None):
        super().__init__(message)
        self.cause_message = cause_message
        self.upstream_status = upstream_status
