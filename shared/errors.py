"""
Shared error handling for the ordering API.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class OrderingServiceException(Exception):
    """Base exception for ordering API services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(OrderingServiceException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(OrderingServiceException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ValidationError(OrderingServiceException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(OrderingServiceException):
    """Requested resource does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ServiceError(OrderingServiceException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class ExternalServiceError(OrderingServiceException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class CacheStoreError(OrderingServiceException):
    """The cache backing store failed or is unreachable."""

    status_code = 503

    def __init__(self, operation: str, message: str = "Cache store unavailable", details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("CACHE_STORE_ERROR", f"{operation}: {message}", details)


class CacheConfigurationError(OrderingServiceException):
    """A cache category or policy is missing or invalid."""

    status_code = 500

    def __init__(self, message: str = "Invalid cache configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_CONFIGURATION_ERROR", message, details)
