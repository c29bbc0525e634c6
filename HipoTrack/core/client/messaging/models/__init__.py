"""
Messaging models package.
"""
from .data import (
    Attachment,
    ConversationPreview,
    DeliveryStatus,
    LocalFile,
    Message,
    MessagingUser,
    Participant,
    SendRequest,
    parse_timestamp,
    utcnow,
)

__all__ = [
    'Attachment',
    'ConversationPreview',
    'DeliveryStatus',
    'LocalFile',
    'Message',
    'MessagingUser',
    'Participant',
    'SendRequest',
    'parse_timestamp',
    'utcnow',
]
