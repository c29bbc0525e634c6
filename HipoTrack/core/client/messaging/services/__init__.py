"""
Messaging services package.
"""
from .directory_loader import ConversationDirectoryLoader
from .send_pipeline import OptimisticSendPipeline
from .state import MessagingStore
from .synchronizer import MessageSynchronizer

__all__ = [
    'ConversationDirectoryLoader',
    'MessageSynchronizer',
    'MessagingStore',
    'OptimisticSendPipeline',
]
