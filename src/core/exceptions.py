"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

Every exception carries an ``error_kind`` so that failures recorded on the
sync cursor and surfaced through the status API can be told apart
(authentication vs. unreachable host vs. timeout, and so on).
"""

from typing import Optional, List

from src.config import ErrorKind


class ApplicationException(Exception):
    """Base exception for all application errors."""

    error_kind: str = ErrorKind.GENERIC

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationException(ApplicationException):
    """Malformed remote record or request payload."""

    error_kind = ErrorKind.VALIDATION


class PersistenceException(ApplicationException):
    """Store read/write failure."""

    error_kind = ErrorKind.PERSISTENCE


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Missing or invalid connection parameters."""

    error_kind = ErrorKind.CONFIGURATION

    def __init__(
        self,
        message: str,
        missing: Optional[List[str]] = None,
        details: Optional[dict] = None
    ):
        self.missing = missing or []
        super().__init__(message, details or {"missing": self.missing})


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class RemoteSourceException(ExternalServiceException):
    """Unexpected remote response (bad status, unparseable payload)."""

    error_kind = ErrorKind.GENERIC


class AuthenticationException(ExternalServiceException):
    """Credentials rejected by the remote API."""

    error_kind = ErrorKind.AUTHENTICATION


class ConnectivityException(ExternalServiceException):
    """Network-level failure talking to the remote API."""

    error_kind = ErrorKind.UNREACHABLE


class HostUnreachableException(ConnectivityException):
    """DNS failure or refused connection."""

    error_kind = ErrorKind.UNREACHABLE


class RemoteTimeoutException(ConnectivityException):
    """Remote call exceeded its timeout."""

    error_kind = ErrorKind.TIMEOUT


class NotificationException(ExternalServiceException):
    """No notification sink accepted the notification."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Sink", message, details)
