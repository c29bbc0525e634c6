"""
Utility functions and shared components for the messaging client.
"""

from .constants import (
    ATTACHMENTS_TABLE,
    AUDIT_EVENTS_TABLE,
    DEFAULT_ATTACHMENT_BUCKET,
    MAX_RECONNECT_ATTEMPTS,
    MESSAGES_TABLE,
    RECONNECT_DELAY_SECONDS,
)
from .exceptions import (
    AuthenticationError,
    BackendError,
    ClientError,
    RealtimeConnectionError,
    StorageError,
    error_message,
)

__all__ = [
    'ClientError',
    'BackendError',
    'AuthenticationError',
    'StorageError',
    'RealtimeConnectionError',
    'error_message',
    'ATTACHMENTS_TABLE',
    'AUDIT_EVENTS_TABLE',
    'DEFAULT_ATTACHMENT_BUCKET',
    'MAX_RECONNECT_ATTEMPTS',
    'MESSAGES_TABLE',
    'RECONNECT_DELAY_SECONDS',
]
