"""
Shared messaging state.

The directory and the per-conversation message map are only ever replaced
as whole values computed by the pure reducers below. A reducer never
awaits, so handlers running concurrently on the event loop cannot
interleave inside an update. Merges are keyed by message/attachment id,
which makes them safe to apply more than once and in any order.
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..models.data import Attachment, ConversationPreview, DeliveryStatus, Message

logger = logging.getLogger(__name__)

Conversations = Tuple[ConversationPreview, ...]
MessageMap = Mapping[str, Tuple[Message, ...]]
StateListener = Callable[['MessagingStore', str], None]


# ---------------------------------------------------------------------------
# Directory reducers
# ---------------------------------------------------------------------------

def sort_conversations(conversations: Sequence[ConversationPreview]) -> Conversations:
    """Most recently updated first; ties keep their incoming order."""
    return tuple(sorted(conversations, key=lambda c: c.updated_at, reverse=True))


def promote_conversation(
    conversations: Conversations,
    conversation_id: str,
    last_message: Message,
    updated_at: datetime,
) -> Conversations:
    """Move a conversation to the front with a new last message."""
    current = next((c for c in conversations if c.id == conversation_id), None)
    if current is None:
        return conversations
    promoted = replace(current, last_message=last_message, updated_at=updated_at)
    return (promoted,) + tuple(c for c in conversations if c.id != conversation_id)


# ---------------------------------------------------------------------------
# Message reducers
# ---------------------------------------------------------------------------

def _with_list(messages: MessageMap, conversation_id: str, items: Sequence[Message]) -> Dict[str, Tuple[Message, ...]]:
    updated = dict(messages)
    updated[conversation_id] = tuple(items)
    return updated


def append_message(messages: MessageMap, message: Message) -> MessageMap:
    """Append a message at the end of its conversation."""
    existing = messages.get(message.conversation_id, ())
    return _with_list(messages, message.conversation_id, existing + (message,))


def merge_pushed_message(messages: MessageMap, message: Message) -> MessageMap:
    """
    Append a push-delivered message unless it is already known.

    An entry counts as known when its id or its recorded server id equals
    the pushed id, so a speculative send waiting for reconciliation is not
    duplicated either.
    """
    existing = messages.get(message.conversation_id, ())
    if any(item.matches(message.id) for item in existing):
        return messages
    return _with_list(messages, message.conversation_id, existing + (message,))


def _map_message(
    messages: MessageMap,
    conversation_id: str,
    message_id: str,
    change: Callable[[Message], Message],
) -> MessageMap:
    existing = messages.get(conversation_id)
    if not existing or not any(item.id == message_id for item in existing):
        return messages
    return _with_list(
        messages,
        conversation_id,
        [change(item) if item.id == message_id else item for item in existing],
    )


def set_message_status(
    messages: MessageMap,
    conversation_id: str,
    message_id: str,
    status: DeliveryStatus,
) -> MessageMap:
    """Set the delivery status of one message in place."""
    return _map_message(messages, conversation_id, message_id, lambda m: replace(m, status=status))


def assign_server_id(
    messages: MessageMap,
    conversation_id: str,
    temporary_id: str,
    server_id: str,
) -> MessageMap:
    """Record the backend id on a speculative entry without changing its id."""
    return _map_message(messages, conversation_id, temporary_id, lambda m: replace(m, server_id=server_id))


def reconcile_message(
    messages: MessageMap,
    conversation_id: str,
    temporary_id: str,
    final: Message,
) -> MessageMap:
    """
    Replace the speculative entry with the confirmed message.

    The first entry carrying either the temporary id or the final id is
    replaced where it stands; any later entry with the final id (a push
    that won the race) is dropped. If neither exists, e.g. after the cache
    was reset for another viewer, the state is returned unchanged.
    """
    existing = messages.get(conversation_id, ())
    result: List[Message] = []
    placed = False
    for item in existing:
        if item.id == temporary_id or item.id == final.id:
            if not placed:
                result.append(final)
                placed = True
            continue
        result.append(item)
    if not placed:
        return messages
    return _with_list(messages, conversation_id, result)


def merge_attachment(messages: MessageMap, attachment: Attachment) -> MessageMap:
    """
    Merge an attachment into the message that owns it.

    The owner is searched across every cached conversation. An attachment
    with the same id is replaced in place; otherwise it is appended.
    Unknown owners leave the state unchanged.
    """
    for conversation_id, items in messages.items():
        if not any(item.matches(attachment.message_id) for item in items):
            continue

        def attach(message: Message) -> Message:
            if not message.matches(attachment.message_id):
                return message
            if any(a.id == attachment.id for a in message.attachments):
                merged = tuple(attachment if a.id == attachment.id else a for a in message.attachments)
            else:
                merged = message.attachments + (attachment,)
            return replace(message, attachments=merged)

        return _with_list(messages, conversation_id, [attach(item) for item in items])
    return messages


def replace_history(messages: MessageMap, conversation_id: str, fetched: Sequence[Message]) -> MessageMap:
    """
    Install freshly fetched history for a conversation.

    Speculative entries the backend does not know about yet stay after the
    fetched rows, so a refetch during a send does not lose them.
    """
    fetched = tuple(fetched)
    fetched_ids = {m.id for m in fetched}
    local = tuple(
        item for item in messages.get(conversation_id, ())
        if item.is_speculative
        and item.id not in fetched_ids
        and (item.server_id is None or item.server_id not in fetched_ids)
    )
    return _with_list(messages, conversation_id, fetched + local)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class MessagingStore:
    """
    Single in-memory store shared by the directory loader, the
    synchronizer and the send pipeline.
    """

    def __init__(self, selected_conversation_id: Optional[str] = None):
        self._conversations: Conversations = ()
        self._messages: MessageMap = {}
        self._selected_conversation_id = selected_conversation_id
        self._loading_conversations = False
        self._loading_messages = False
        self._in_flight: Mapping[str, int] = {}
        self._generation = 0
        self._error: Optional[str] = None
        self._listeners: List[StateListener] = []

    @property
    def conversations(self) -> Conversations:
        return self._conversations

    @property
    def messages_by_conversation(self) -> MessageMap:
        return self._messages

    @property
    def selected_conversation_id(self) -> Optional[str]:
        return self._selected_conversation_id

    @property
    def loading_conversations(self) -> bool:
        return self._loading_conversations

    @property
    def loading_messages(self) -> bool:
        return self._loading_messages

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def sending(self) -> bool:
        """True while any send is in flight."""
        return bool(self._in_flight)

    def is_sending(self, conversation_id: str) -> bool:
        """True while a send to this conversation is in flight."""
        return conversation_id in self._in_flight

    def messages_for(self, conversation_id: Optional[str]) -> Tuple[Message, ...]:
        if conversation_id is None:
            return ()
        return self._messages.get(conversation_id, ())

    def get_conversation(self, conversation_id: str) -> Optional[ConversationPreview]:
        return next((c for c in self._conversations if c.id == conversation_id), None)

    # -- updates --------------------------------------------------------

    def update_conversations(self, reducer: Callable[..., Conversations], *args) -> None:
        self._conversations = reducer(self._conversations, *args)
        self._notify("conversations")

    def update_messages(self, reducer: Callable[..., MessageMap], *args) -> None:
        self._messages = reducer(self._messages, *args)
        self._notify("messages")

    def set_conversations(self, conversations: Sequence[ConversationPreview]) -> None:
        self._conversations = tuple(conversations)
        self._notify("conversations")

    def select(self, conversation_id: Optional[str]) -> None:
        self._selected_conversation_id = conversation_id
        self._notify("selected_conversation_id")

    def set_error(self, error: Optional[str]) -> None:
        self._error = error
        self._notify("error")

    def set_loading_conversations(self, loading: bool) -> None:
        self._loading_conversations = loading
        self._notify("loading_conversations")

    def set_loading_messages(self, loading: bool) -> None:
        self._loading_messages = loading
        self._notify("loading_messages")

    def begin_send(self, conversation_id: str) -> int:
        """Count a send as in flight; returns the token to pass to ``end_send``."""
        in_flight = dict(self._in_flight)
        in_flight[conversation_id] = in_flight.get(conversation_id, 0) + 1
        self._in_flight = in_flight
        self._notify("sending")
        return self._generation

    def end_send(self, conversation_id: str, generation: Optional[int] = None) -> None:
        """Finish a send. Sends begun before the last ``reset`` are ignored."""
        if generation is not None and generation != self._generation:
            return
        in_flight = dict(self._in_flight)
        remaining = in_flight.get(conversation_id, 0) - 1
        if remaining > 0:
            in_flight[conversation_id] = remaining
        else:
            in_flight.pop(conversation_id, None)
        self._in_flight = in_flight
        self._notify("sending")

    def reset(self, selected_conversation_id: Optional[str] = None) -> None:
        """Drop all cached data, e.g. when the viewer changes."""
        self._conversations = ()
        self._messages = {}
        self._selected_conversation_id = selected_conversation_id
        self._loading_conversations = False
        self._loading_messages = False
        self._in_flight = {}
        self._generation += 1
        self._error = None
        self._notify("reset")

    # -- listeners ------------------------------------------------------

    def add_listener(self, listener: StateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, field_name: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, field_name)
            except Exception:
                logger.exception("State listener failed on %s update", field_name)
