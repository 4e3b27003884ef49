"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from src.core.exceptions import (
    ApplicationException,
    ValidationException,
    PersistenceException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    RemoteSourceException,
    AuthenticationException,
    ConnectivityException,
    HostUnreachableException,
    RemoteTimeoutException,
    NotificationException,
)
from src.core.time import Clock, utc_now, ensure_utc, format_duration
from src.core.unit_of_work import IUnitOfWork, UnitOfWorkFactory

__all__ = [
    "ApplicationException",
    "ValidationException",
    "PersistenceException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "RemoteSourceException",
    "AuthenticationException",
    "ConnectivityException",
    "HostUnreachableException",
    "RemoteTimeoutException",
    "NotificationException",
    "Clock",
    "utc_now",
    "ensure_utc",
    "format_duration",
    "IUnitOfWork",
    "UnitOfWorkFactory",
]
