"""
Custom exceptions for the messaging client and its backend adapters.
"""

from typing import Optional


class ClientError(Exception):
    """Base exception for client errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class BackendError(ClientError):
    """Exception raised when a backend request fails."""

    def __init__(self, message: str, status: Optional[int] = None, details: dict = None):
        super().__init__(message, details)
        self.status = status


class AuthenticationError(BackendError):
    """Exception raised when the backend rejects the credentials."""
    pass


class StorageError(BackendError):
    """Exception raised for object storage failures."""
    pass


class RealtimeConnectionError(ClientError):
    """Exception raised when the realtime feed cannot be reached."""
    pass


def error_message(exc: BaseException, default: str = "") -> str:
    """User-facing text for an exception caught at an operation boundary."""
    if isinstance(exc, ClientError):
        return exc.message or default
    return str(exc) or default or exc.__class__.__name__
