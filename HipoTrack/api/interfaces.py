"""
Backend contract consumed by the messaging core.

The core never talks to Supabase directly; it only calls the operations
below. ``SupabaseBackend`` implements them over HTTP and the realtime
websocket, and the test suite provides an in-memory implementation.
"""

from abc import abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

Row = Dict[str, Any]
InsertHandler = Callable[[Row], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], Awaitable[None]]


@runtime_checkable
class MessagingBackend(Protocol):
    """Operations the messaging core needs from the hosted backend."""

    @abstractmethod
    async def list_conversations_for_user(self, user_id: str) -> List[Row]:
        """
        Conversations the user participates in, newest first.

        Each row embeds ``participants`` (the full roster) and
        ``latest_message`` (zero or one message with its ``attachments``).
        """
        ...

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> List[Row]:
        """Messages of a conversation, oldest first, with embedded ``attachments``."""
        ...

    @abstractmethod
    async def list_attachments(self, message_id: str) -> List[Row]:
        """Attachment rows already stored for a message."""
        ...

    @abstractmethod
    async def insert_message(
        self,
        conversation_id: str,
        sender_id: str,
        sender_role: str,
        content: str,
        topic: Optional[str],
    ) -> Row:
        """Insert a message row; the backend assigns ``id`` and ``created_at``."""
        ...

    @abstractmethod
    async def upload_file(self, bucket_path: str, data: bytes, content_type: Optional[str]) -> str:
        """Upload bytes to object storage and return the stored path."""
        ...

    @abstractmethod
    def get_public_url(self, storage_path: str) -> str:
        """Durable URL for a stored object."""
        ...

    @abstractmethod
    async def insert_attachment(
        self,
        message_id: str,
        name: str,
        content_type: Optional[str],
        size: Optional[int],
        storage_path: str,
        url: str,
    ) -> Row:
        """Insert an attachment row referencing a stored object."""
        ...

    @abstractmethod
    async def subscribe_to_inserts(self, table: str, on_insert: InsertHandler) -> Unsubscribe:
        """
        Receive every row inserted into ``table`` that the viewer may see.

        Authorization is enforced by the backend. Returns an async callable
        that ends the subscription.
        """
        ...

    @abstractmethod
    async def insert_audit_event(self, payload: Row) -> Row:
        """Insert an audit event row."""
        ...

    @abstractmethod
    async def list_audit_events(self, filters: Row, offset: int, limit: int) -> Tuple[List[Row], int]:
        """Audit rows matching ``filters`` newest first, with the total match count."""
        ...
