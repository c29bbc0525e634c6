"""
Data models for the messaging core.

All models are frozen; state changes build new values with
``dataclasses.replace``.
"""
import mimetypes
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

import aiofiles


# Fractional seconds, padded or cut to six digits before parsing
_FRACTION_RE = re.compile(r"\.(\d+)")


class DeliveryStatus(str, Enum):
    """Lifecycle of a message or attachment on its way to the backend."""
    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"


def parse_timestamp(value) -> datetime:
    """Parse a backend ISO-8601 timestamp into an aware datetime (UTC if naive)."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MessagingUser:
    """The signed-in viewer."""
    id: str
    name: str
    role: str
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class Participant:
    """A member of a conversation, as shown next to their messages."""
    id: str
    display_name: str
    role: str
    avatar_url: Optional[str] = None
    is_current_user: bool = False


@dataclass(frozen=True)
class Attachment:
    """A file attached to a message."""
    id: str
    message_id: str
    name: str
    url: Optional[str]
    content_type: Optional[str]
    size: Optional[int]
    created_at: datetime
    status: DeliveryStatus = DeliveryStatus.SENT


@dataclass(frozen=True)
class Message:
    """
    A message in a conversation.

    ``id`` is a client-generated temporary id while the message is being
    sent; ``server_id`` holds the backend id once the row exists, until
    reconciliation promotes it to ``id``.
    """
    id: str
    conversation_id: str
    content: str
    topic: Optional[str]
    created_at: datetime
    sender: Participant
    attachments: Tuple[Attachment, ...] = ()
    status: DeliveryStatus = DeliveryStatus.SENT
    optimistic_key: Optional[str] = None
    server_id: Optional[str] = None

    def matches(self, message_id: str) -> bool:
        """Check whether this entry stands for the given backend or local id."""
        return self.id == message_id or (self.server_id is not None and self.server_id == message_id)

    @property
    def is_speculative(self) -> bool:
        """True until the send pipeline reconciles this entry."""
        return self.optimistic_key is not None


@dataclass(frozen=True)
class ConversationPreview:
    """A row of the conversation directory."""
    id: str
    title: Optional[str]
    updated_at: datetime
    participants: Tuple[Participant, ...] = ()
    last_message: Optional[Message] = None

    def find_participant(self, user_id: str) -> Optional[Participant]:
        """Get the roster entry for a user, if present."""
        for participant in self.participants:
            if participant.id == user_id:
                return participant
        return None


@dataclass(frozen=True)
class LocalFile:
    """A file picked by the user, waiting to be uploaded."""
    name: str
    data: bytes = field(repr=False)
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    async def from_path(cls, path: str, content_type: Optional[str] = None) -> 'LocalFile':
        """Read a file from disk without blocking the event loop."""
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        name = os.path.basename(path)
        if content_type is None:
            content_type, _ = mimetypes.guess_type(name)
        return cls(name=name, data=data, content_type=content_type)


@dataclass(frozen=True)
class SendRequest:
    """What the user asked to send."""
    conversation_id: Optional[str]
    content: str
    topic: Optional[str] = None
    attachments: Tuple[LocalFile, ...] = ()
