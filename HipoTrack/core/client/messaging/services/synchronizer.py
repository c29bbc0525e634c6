"""
Message history loading and push-feed merging.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

from HipoTrack.api.interfaces import MessagingBackend, Row, Unsubscribe
from HipoTrack.core.client.utils.constants import ATTACHMENTS_TABLE, MESSAGES_TABLE
from HipoTrack.core.client.utils.exceptions import error_message
from ..models.data import DeliveryStatus, Message, MessagingUser
from .formatting import fallback_sender, format_attachment, format_message
from .state import (
    MessagingStore,
    merge_attachment,
    merge_pushed_message,
    promote_conversation,
    replace_history,
)

logger = logging.getLogger(__name__)


class MessageSynchronizer:
    """
    Keeps each cached conversation's message list current.

    History is fetched whenever a conversation is selected; inserts pushed
    by the backend are merged into whichever cached conversation they
    belong to. Senders are resolved against the roster loaded with the
    directory, which is not refreshed during the session.
    """

    def __init__(self, backend: MessagingBackend, store: MessagingStore):
        self._backend = backend
        self._store = store

    def _participants(self, conversation_id: str):
        conversation = self._store.get_conversation(conversation_id)
        return conversation.participants if conversation else ()

    async def load_history(
        self,
        conversation_id: Optional[str],
        viewer: Optional[MessagingUser],
    ) -> Tuple[Message, ...]:
        """
        Fetch the full history of a conversation, oldest first.

        ``None`` means nothing is selected: no fetch, empty result. On
        failure the cached list is kept and the error is stored.
        """
        if conversation_id is None or viewer is None:
            return ()

        self._store.set_loading_messages(True)
        try:
            rows = await self._backend.list_messages(conversation_id)
            participants = self._participants(conversation_id)
            history = [
                format_message(row, participants, fallback_sender(row, participants, viewer))
                for row in rows
            ]
        except Exception as e:
            logger.warning("Failed to load messages for %s: %s", conversation_id, e)
            self._store.set_error(error_message(e))
            return self._store.messages_for(conversation_id)
        finally:
            self._store.set_loading_messages(False)

        self._store.update_messages(replace_history, conversation_id, history)
        return self._store.messages_for(conversation_id)

    async def handle_message_insert(self, row: Row, viewer: MessagingUser) -> None:
        """Merge a pushed message row and promote its conversation."""
        conversation_id = row["conversation_id"]
        try:
            attachment_rows = await self._backend.list_attachments(row["id"])
        except Exception as e:
            logger.warning("Attachment lookup for pushed message %s failed: %s", row["id"], e)
            attachment_rows = []

        participants = self._participants(conversation_id)
        message = format_message(
            dict(row, attachments=attachment_rows),
            participants,
            fallback_sender(row, participants, viewer),
            DeliveryStatus.SENT,
        )

        before = self._store.messages_by_conversation
        self._store.update_messages(merge_pushed_message, message)
        if self._store.messages_by_conversation is before:
            logger.debug("Ignoring already known message %s", message.id)
            return
        self._store.update_conversations(promote_conversation, conversation_id, message, message.created_at)
        logger.debug("Merged pushed message %s into %s", message.id, conversation_id)

    def handle_attachment_insert(self, row: Row) -> None:
        """Merge a pushed attachment row into its message, wherever it is cached."""
        attachment = format_attachment(row, DeliveryStatus.SENT)
        self._store.update_messages(merge_attachment, attachment)

    async def subscribe(self, viewer: MessagingUser) -> Unsubscribe:
        """
        Start receiving message and attachment inserts for the viewer.

        Returns an async callable that ends both subscriptions.
        """
        async def on_message(row: Row) -> None:
            await self.handle_message_insert(row, viewer)

        unsubscribe_messages = await self._backend.subscribe_to_inserts(MESSAGES_TABLE, on_message)
        try:
            unsubscribe_attachments = await self._backend.subscribe_to_inserts(
                ATTACHMENTS_TABLE, self.handle_attachment_insert
            )
        except Exception:
            await unsubscribe_messages()
            raise

        logger.info("Subscribed to message feed for %s", viewer.id)

        async def unsubscribe() -> None:
            try:
                await unsubscribe_attachments()
            finally:
                await unsubscribe_messages()
            logger.info("Unsubscribed from message feed for %s", viewer.id)

        return unsubscribe

    @asynccontextmanager
    async def subscription(self, viewer: MessagingUser) -> AsyncIterator[None]:
        """Push subscription scoped to a ``with`` block; always released on exit."""
        unsubscribe = await self.subscribe(viewer)
        try:
            yield
        finally:
            await unsubscribe()
