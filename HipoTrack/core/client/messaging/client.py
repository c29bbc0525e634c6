"""
Messaging client: the surface UI code talks to.

Composes the directory loader, the message synchronizer and the send
pipeline over one shared store, and ties the push subscription to the
viewer's identity.
"""
import logging
from contextlib import AsyncExitStack
from typing import Iterable, Optional, Tuple

from HipoTrack.api.interfaces import MessagingBackend
from HipoTrack.core.client.utils.exceptions import error_message
from .models.data import ConversationPreview, LocalFile, Message, MessagingUser, SendRequest
from .services.directory_loader import ConversationDirectoryLoader
from .services.send_pipeline import OptimisticSendPipeline
from .services.state import MessagingStore, StateListener
from .services.synchronizer import MessageSynchronizer

logger = logging.getLogger(__name__)


class MessagingClient:
    """
    Conversations, messages and sending for one signed-in viewer.

    Usage:
        async with MessagingClient(backend, current_user=user) as client:
            await client.send(client.selected_conversation_id, "Pay stubs attached",
                              attachments=[await LocalFile.from_path("stub.pdf")])
    """

    def __init__(
        self,
        backend: MessagingBackend,
        current_user: Optional[MessagingUser] = None,
        initial_conversation_id: Optional[str] = None,
        audit=None,
        store: Optional[MessagingStore] = None,
    ):
        self._current_user = current_user
        self.store = store or MessagingStore(initial_conversation_id)
        self.directory = ConversationDirectoryLoader(backend, self.store)
        self.synchronizer = MessageSynchronizer(backend, self.store)
        self.pipeline = OptimisticSendPipeline(backend, self.store, audit=audit)
        self._subscription: Optional[AsyncExitStack] = None

    # -- state ----------------------------------------------------------

    @property
    def current_user(self) -> Optional[MessagingUser]:
        return self._current_user

    @property
    def conversations(self) -> Tuple[ConversationPreview, ...]:
        return self.store.conversations

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Messages of the selected conversation."""
        return self.store.messages_for(self.store.selected_conversation_id)

    @property
    def selected_conversation_id(self) -> Optional[str]:
        return self.store.selected_conversation_id

    @property
    def loading_conversations(self) -> bool:
        return self.store.loading_conversations

    @property
    def loading_messages(self) -> bool:
        return self.store.loading_messages

    @property
    def sending(self) -> bool:
        return self.store.sending

    @property
    def error(self) -> Optional[str]:
        return self.store.error

    def is_sending(self, conversation_id: str) -> bool:
        return self.store.is_sending(conversation_id)

    def add_listener(self, listener: StateListener) -> None:
        self.store.add_listener(listener)

    def remove_listener(self, listener: StateListener) -> None:
        self.store.remove_listener(listener)

    def clear_error(self) -> None:
        self.store.set_error(None)

    # -- lifecycle ------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to the push feed and load the directory and selected history."""
        if self._current_user is None:
            logger.debug("No viewer; messaging client idle")
            return
        if self._subscription is None:
            stack = AsyncExitStack()
            try:
                await stack.enter_async_context(self.synchronizer.subscription(self._current_user))
            except Exception as e:
                await stack.aclose()
                logger.warning("Push subscription for %s failed: %s", self._current_user.id, e)
                self.store.set_error(error_message(e))
            else:
                self._subscription = stack
        await self.refresh()

    async def close(self) -> None:
        """Release the push subscription."""
        stack, self._subscription = self._subscription, None
        if stack is not None:
            await stack.aclose()

    async def __aenter__(self) -> 'MessagingClient':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def set_current_user(self, user: Optional[MessagingUser]) -> None:
        """Switch identity: drop the old subscription and cached data, start over."""
        await self.close()
        self._current_user = user
        self.store.reset()
        await self.start()

    # -- operations -----------------------------------------------------

    async def refresh(self) -> None:
        """Reload the directory, then the selected conversation's history."""
        await self.directory.load(self._current_user)
        await self.synchronizer.load_history(self.store.selected_conversation_id, self._current_user)

    async def select_conversation(self, conversation_id: Optional[str]) -> Tuple[Message, ...]:
        """Select a conversation and fetch its history."""
        self.store.select(conversation_id)
        return await self.synchronizer.load_history(conversation_id, self._current_user)

    async def send_message(self, request: SendRequest) -> Optional[Message]:
        return await self.pipeline.send(request, self._current_user)

    async def send(
        self,
        conversation_id: Optional[str],
        content: str,
        topic: Optional[str] = None,
        attachments: Iterable[LocalFile] = (),
    ) -> Optional[Message]:
        """Shorthand for ``send_message(SendRequest(...))``."""
        return await self.send_message(
            SendRequest(
                conversation_id=conversation_id,
                content=content,
                topic=topic,
                attachments=tuple(attachments),
            )
        )
