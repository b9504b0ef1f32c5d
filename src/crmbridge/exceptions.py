"""
Custom exceptions for the CRM Bridge application.
"""

from enum import Enum
from typing import Any, Optional


class FailureKind(str, Enum):
    """Classification of a remote API failure, used to decide on re-queueing."""
    AUTHENTICATION = "authentication"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class CRMBridgeError(Exception):
    """Base exception for all application-specific errors."""
    pass


class ConfigurationError(CRMBridgeError):
    """Error related to sync, mapping or credential configuration."""
    pass


class RecordNotFoundError(CRMBridgeError):
    """The requested content record does not exist in the record source."""
    pass


class ValidationFailure(CRMBridgeError):
    """Record is not eligible for sync. Expected, logged as a warning."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.field = context.get("field")
        self.context = context


class TransformationFailure(CRMBridgeError):
    """A mapping's strategy configuration could not be applied."""

    def __init__(self, message: str, local_key: Optional[str] = None):
        super().__init__(message)
        self.local_key = local_key


class SalesforceAPIError(CRMBridgeError):
    """Exception raised for Salesforce API errors."""

    kind = FailureKind.PERMANENT

    def __init__(self, message: str, status_code: Optional[int] = None, error_body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_body = error_body

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": str(self),
            "status_code": self.status_code,
            "error_body": self.error_body,
        }


class AuthenticationFailure(SalesforceAPIError):
    """Credentials rejected, or the token could not be refreshed."""
    kind = FailureKind.AUTHENTICATION


class TransientFailure(SalesforceAPIError):
    """Network error or 5xx that survived the retry policy."""
    kind = FailureKind.TRANSIENT


class PermanentFailure(SalesforceAPIError):
    """The remote side rejected the request; retrying will not help."""
    kind = FailureKind.PERMANENT
