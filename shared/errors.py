"""
Shared error handling for the Bazaar Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class PrincipalNotFound(AccessLayerException):
    """Identity does not resolve to a known individual."""

    status_code = 404

    def __init__(self, identity: str, details: Optional[Dict[str, Any]] = None):
        self.identity = identity
        super().__init__(
            "PRINCIPAL_NOT_FOUND",
            f"Principal '{identity}' not found",
            details or {"principal_id": identity}
        )


class RuleNotFoundError(AccessLayerException):
    """Rule lookup by id failed on the administration surface."""

    status_code = 404

    def __init__(self, rule_id: str):
        super().__init__("RULE_NOT_FOUND", f"Rule '{rule_id}' not found", {"rule_id": rule_id})


class RuleConflictError(AccessLayerException):
    """A rule already exists for the target being written."""

    status_code = 409

    def __init__(self, message: str = "Rule already exists for target", details: Optional[Dict[str, Any]] = None):
        super().__init__("RULE_CONFLICT", message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 503

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class RuleStoreUnavailable(ExternalServiceError):
    """The rule store could not be read or written."""

    def __init__(self, message: str = "Rule store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("rule_store", message, details)
        self.code = "RULE_STORE_UNAVAILABLE"


class DirectoryUnavailable(ExternalServiceError):
    """The principal directory could not be queried."""

    def __init__(self, message: str = "Principal directory unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("principal_directory", message, details)
        self.code = "DIRECTORY_UNAVAILABLE"
