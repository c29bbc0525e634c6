"""
Messaging core: conversation directory, message synchronization and
optimistic sending.
"""
from .client import MessagingClient
from .models import (
    Attachment,
    ConversationPreview,
    DeliveryStatus,
    LocalFile,
    Message,
    MessagingUser,
    Participant,
    SendRequest,
)
from .services import (
    ConversationDirectoryLoader,
    MessageSynchronizer,
    MessagingStore,
    OptimisticSendPipeline,
)

__all__ = [
    'MessagingClient',
    'Attachment',
    'ConversationPreview',
    'DeliveryStatus',
    'LocalFile',
    'Message',
    'MessagingUser',
    'Participant',
    'SendRequest',
    'ConversationDirectoryLoader',
    'MessageSynchronizer',
    'MessagingStore',
    'OptimisticSendPipeline',
]
