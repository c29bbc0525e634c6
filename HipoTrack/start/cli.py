"""
Command-line runner for the messaging core.
Lists conversations, prints history, sends messages and follows the feed.
"""

import asyncio
from typing import Iterable, Optional

from HipoTrack.api.client import SupabaseBackend, close_session
from HipoTrack.config import config
from HipoTrack.core.client.audit import AuditLogService
from HipoTrack.core.client.messaging import DeliveryStatus, LocalFile, Message, MessagingClient, MessagingUser

__all__ = ['conversations', 'messages', 'send', 'watch', 'viewer_from_args']


def viewer_from_args(user_id: Optional[str], name: Optional[str], role: Optional[str]) -> MessagingUser:
    """Build the viewer from command-line values, falling back to the environment."""
    if not config.is_backend_configured():
        raise SystemExit("Missing Supabase settings. Please set SUPABASE_URL and SUPABASE_ANON_KEY.")
    user_id = user_id or config.USER_ID
    if not user_id:
        raise SystemExit("No viewer given. Use --user-id or set HIPOTRACK_USER_ID.")
    return MessagingUser(
        id=user_id,
        name=name or config.USER_NAME or user_id,
        role=role or config.USER_ROLE,
    )


def _format_line(message: Message) -> str:
    stamp = message.created_at.strftime("%Y-%m-%d %H:%M")
    topic = f"[{message.topic}] " if message.topic else ""
    line = f"{stamp} {message.sender.display_name}: {topic}{message.content}"
    if message.status != DeliveryStatus.SENT:
        line += f" ({message.status.value})"
    for attachment in message.attachments:
        line += f"\n    + {attachment.name} {attachment.url or '(' + attachment.status.value + ')'}"
    return line


def _print_error(client: MessagingClient) -> None:
    if client.error:
        print(f"Error: {client.error}")


async def _with_client(viewer: MessagingUser, conversation_id: Optional[str], run):
    backend = SupabaseBackend()
    client = MessagingClient(
        backend,
        current_user=viewer,
        initial_conversation_id=conversation_id,
        audit=AuditLogService(backend),
    )
    try:
        async with client:
            return await run(client)
    finally:
        await backend.close()
        await close_session()


async def conversations(viewer: MessagingUser) -> None:
    """Print the viewer's conversation directory."""
    async def run(client: MessagingClient) -> None:
        _print_error(client)
        for conversation in client.conversations:
            preview = conversation.last_message.content if conversation.last_message else ""
            names = ", ".join(p.display_name for p in conversation.participants if not p.is_current_user)
            print(f"{conversation.id}  {conversation.title or names or '(untitled)'}")
            if preview:
                print(f"    {preview}")

    await _with_client(viewer, None, run)


async def messages(viewer: MessagingUser, conversation_id: str) -> None:
    """Print the full history of one conversation."""
    async def run(client: MessagingClient) -> None:
        _print_error(client)
        for message in client.messages:
            print(_format_line(message))

    await _with_client(viewer, conversation_id, run)


async def send(
    viewer: MessagingUser,
    conversation_id: str,
    content: str,
    topic: Optional[str] = None,
    paths: Iterable[str] = (),
) -> bool:
    """Send one message with optional attachments; returns whether it was fully delivered."""
    files = [await LocalFile.from_path(path) for path in paths]

    async def run(client: MessagingClient) -> bool:
        message = await client.send(conversation_id, content, topic=topic, attachments=files)
        if message is None:
            _print_error(client)
            print("Nothing sent.")
            return False
        print(_format_line(message))
        _print_error(client)
        return message.status == DeliveryStatus.SENT

    return await _with_client(viewer, conversation_id, run)


async def watch(viewer: MessagingUser, conversation_id: Optional[str] = None) -> None:
    """Follow the push feed and print each new message until interrupted."""
    async def run(client: MessagingClient) -> None:
        seen = {m.id for m in client.messages}

        def on_change(store, field_name: str) -> None:
            if field_name != "messages":
                return
            selected = client.selected_conversation_id
            for message in store.messages_for(selected):
                if message.id not in seen and not message.is_speculative:
                    seen.add(message.id)
                    print(_format_line(message))

        client.add_listener(on_change)
        print(f"Watching {client.selected_conversation_id or 'nothing'}; Ctrl+C to stop.")
        try:
            await asyncio.Event().wait()
        finally:
            client.remove_listener(on_change)

    await _with_client(viewer, conversation_id, run)
