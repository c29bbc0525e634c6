"""
Row formatting: backend rows (dicts) to messaging models.
"""
import re
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Sequence

from HipoTrack.core.client.utils.constants import FALLBACK_DISPLAY_NAME, FALLBACK_ROLE, UNKNOWN_SENDER_NAME
from ..models.data import (
    Attachment,
    ConversationPreview,
    DeliveryStatus,
    Message,
    MessagingUser,
    Participant,
    parse_timestamp,
)

_WHITESPACE_RE = re.compile(r"\s+")


def format_participant(row: Dict[str, Any], current_user_id: Optional[str]) -> Participant:
    """Build a participant from a ``participants`` row."""
    return Participant(
        id=row["user_id"],
        display_name=row.get("display_name") or "",
        role=row.get("role") or FALLBACK_ROLE,
        avatar_url=row.get("avatar_url") or None,
        is_current_user=current_user_id is not None and current_user_id == row["user_id"],
    )


def format_attachment(row: Dict[str, Any], status: DeliveryStatus = DeliveryStatus.SENT) -> Attachment:
    """Build an attachment from an ``attachments`` row."""
    return Attachment(
        id=row["id"],
        message_id=row["message_id"],
        name=row.get("name") or "",
        url=row.get("url"),
        content_type=row.get("content_type"),
        size=row.get("size"),
        created_at=parse_timestamp(row["created_at"]),
        status=status,
    )


def format_message(
    row: Dict[str, Any],
    participants: Sequence[Participant],
    fallback_sender: Participant,
    status: DeliveryStatus = DeliveryStatus.SENT,
    attachment_overrides: Optional[Iterable[Attachment]] = None,
) -> Message:
    """
    Build a message from a ``messages`` row.

    The sender is looked up in ``participants`` by ``sender_id``; when the
    roster does not contain them, ``fallback_sender`` is used. Attachments
    come from the embedded ``attachments`` rows unless overrides are given.
    """
    sender = next(
        (participant for participant in participants if participant.id == row.get("sender_id")),
        fallback_sender,
    )
    if attachment_overrides is not None:
        attachments = tuple(attachment_overrides)
    else:
        attachments = tuple(format_attachment(a) for a in (row.get("attachments") or []))

    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        content=row.get("content") or "",
        topic=row.get("topic"),
        created_at=parse_timestamp(row["created_at"]),
        sender=sender,
        attachments=attachments,
        status=status,
    )


def viewer_participant(participants: Sequence[Participant], user: MessagingUser) -> Participant:
    """The viewer's roster entry, or one synthesized from their profile."""
    for participant in participants:
        if participant.id == user.id:
            return participant
    return Participant(
        id=user.id,
        display_name=user.name,
        role=user.role,
        avatar_url=user.avatar_url,
        is_current_user=True,
    )


def fallback_sender(row: Dict[str, Any], participants: Sequence[Participant], user: MessagingUser) -> Participant:
    """
    Sender to use when a message row's author is missing from the roster.

    Rows written by the viewer get the viewer's participant record; any
    other author gets a placeholder carrying the row's sender role.
    """
    sender_id = row.get("sender_id")
    if sender_id is None or sender_id == user.id:
        return viewer_participant(participants, user)
    return Participant(
        id=sender_id,
        display_name=UNKNOWN_SENDER_NAME,
        role=row.get("sender_role") or FALLBACK_ROLE,
    )


def map_conversation(row: Dict[str, Any], current_user_id: Optional[str]) -> ConversationPreview:
    """Build a directory entry from a conversation row with embedded roster and latest message."""
    participants = tuple(
        format_participant(p, current_user_id) for p in (row.get("participants") or [])
    )
    viewer_sender = next(
        (p for p in participants if p.is_current_user),
        Participant(
            id=current_user_id or "",
            display_name=FALLBACK_DISPLAY_NAME,
            role=FALLBACK_ROLE,
            is_current_user=True,
        ),
    )

    latest = row.get("latest_message") or []
    return ConversationPreview(
        id=row["id"],
        title=row.get("title"),
        updated_at=parse_timestamp(row["updated_at"]),
        participants=participants,
        last_message=format_message(latest[0], participants, viewer_sender) if latest else None,
    )


def build_storage_path(conversation_id: str, message_id: str, index: int, name: str, now: datetime) -> str:
    """
    Object storage key for an attachment.

    ``{conversation}/{message}/{epoch_ms}-{n}-{name}``, with whitespace
    collapsed to dashes and everything lower-cased. ``n`` is 1-based.
    """
    epoch_ms = int(now.timestamp() * 1000)
    path = f"{conversation_id}/{message_id}/{epoch_ms}-{index + 1}-{name}"
    return _WHITESPACE_RE.sub("-", path).lower()
