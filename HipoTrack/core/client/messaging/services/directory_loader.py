"""
Conversation directory loading.
"""
import logging
from typing import Optional

from HipoTrack.api.interfaces import MessagingBackend
from HipoTrack.core.client.utils.exceptions import error_message
from ..models.data import MessagingUser
from .formatting import map_conversation
from .state import Conversations, MessagingStore, sort_conversations

logger = logging.getLogger(__name__)


class ConversationDirectoryLoader:
    """Loads the conversations the viewer participates in."""

    def __init__(self, backend: MessagingBackend, store: MessagingStore):
        self._backend = backend
        self._store = store

    async def load(self, viewer: Optional[MessagingUser]) -> Conversations:
        """
        Fetch the viewer's conversations, newest first.

        Without a viewer nothing is fetched and an empty tuple is returned.
        On failure the error is stored and the previously loaded directory
        is kept and returned. When nothing is selected yet, the first
        conversation becomes the selection.
        """
        if viewer is None or not viewer.id:
            return ()

        self._store.set_loading_conversations(True)
        try:
            rows = await self._backend.list_conversations_for_user(viewer.id)
            conversations = sort_conversations([map_conversation(row, viewer.id) for row in rows])
        except Exception as e:
            logger.warning("Failed to load conversations for %s: %s", viewer.id, e)
            self._store.set_error(error_message(e))
            return self._store.conversations
        finally:
            self._store.set_loading_conversations(False)

        self._store.set_conversations(conversations)
        logger.debug("Loaded %d conversations for %s", len(conversations), viewer.id)

        if self._store.selected_conversation_id is None and conversations:
            self._store.select(conversations[0].id)
        return conversations
