"""
Shared error handling for the Storefront backend.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class StorefrontException(Exception):
    """Base exception for Storefront services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(StorefrontException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(StorefrontException):
    """Requested document does not exist in the origin store."""

    status_code = 404

    def __init__(self, resource: str, resource_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", f"{resource} not found", {"id": resource_id, **(details or {})})


class ServiceError(StorefrontException):
    """Unexpected failure inside a service."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class CacheError(StorefrontException):
    """Cache-layer errors. Never surfaced to HTTP callers by the cache facade."""

    status_code = 503

    def __init__(self, code: str = "CACHE_ERROR", message: str = "Cache error", details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class CacheConnectionError(CacheError):
    """Remote cache store is unreachable, timed out, or has been given up on."""

    def __init__(self, message: str = "Remote cache store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_CONNECTION_ERROR", message, details)


class CacheSerializationError(CacheError):
    """Value could not be encoded to, or decoded from, its cached JSON form."""

    def __init__(self, message: str = "Cache value serialization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_SERIALIZATION_ERROR", message, details)
