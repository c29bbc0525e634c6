"""
Optimistic message sending.

A send renders a speculative ``pending`` message before any network call,
then writes the message row, uploads each attachment and writes its row,
and finally swaps the speculative entry for the confirmed message in the
same position.

Per send:

    pending --(message row written, every attachment stored)--> sent
    pending --(message row rejected)--------------------------> error
    pending --(message row written, any attachment failed)----> error

Nothing is retried; failures end up as ``error`` statuses plus the store's
error string.
"""
import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from HipoTrack.api.interfaces import MessagingBackend
from HipoTrack.core.client.utils.constants import (
    ATTACHMENT_ROW_FAILED_ERROR,
    NO_CONVERSATION_ERROR,
    NOT_SIGNED_IN_ERROR,
    SEND_FAILED_ERROR,
)
from HipoTrack.core.client.utils.exceptions import error_message
from ..models.data import (
    Attachment,
    DeliveryStatus,
    LocalFile,
    Message,
    MessagingUser,
    SendRequest,
    utcnow,
)
from .formatting import build_storage_path, format_attachment, format_message, viewer_participant
from .state import (
    MessagingStore,
    append_message,
    assign_server_id,
    promote_conversation,
    reconcile_message,
    set_message_status,
)

if TYPE_CHECKING:
    from HipoTrack.core.client.audit import AuditLogService

logger = logging.getLogger(__name__)


def _new_temporary_id() -> str:
    return str(uuid.uuid4())


class OptimisticSendPipeline:
    """Sends messages with immediate local feedback."""

    def __init__(
        self,
        backend: MessagingBackend,
        store: MessagingStore,
        audit: Optional['AuditLogService'] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = _new_temporary_id,
    ):
        self._backend = backend
        self._store = store
        self._audit = audit
        self._clock = clock
        self._id_factory = id_factory

    async def send(self, request: SendRequest, viewer: Optional[MessagingUser]) -> Optional[Message]:
        """
        Send a message and its attachments.

        Returns the message as it ends up in the conversation (``sent`` or
        ``error``), or None when the request was rejected before anything
        was rendered. Never raises for backend failures.
        """
        if viewer is None:
            self._store.set_error(NOT_SIGNED_IN_ERROR)
            return None
        if not request.conversation_id:
            self._store.set_error(NO_CONVERSATION_ERROR)
            return None

        content = (request.content or "").strip()
        if not content:
            return None

        conversation_id = request.conversation_id
        generation = self._store.begin_send(conversation_id)
        try:
            # Rendered without yielding to the event loop.
            optimistic = self._speculate(request, conversation_id, content, viewer)
            return await self._deliver(request, optimistic, viewer)
        finally:
            self._store.end_send(conversation_id, generation)

    def _speculate(
        self,
        request: SendRequest,
        conversation_id: str,
        content: str,
        viewer: MessagingUser,
    ) -> Message:
        temporary_id = self._id_factory()
        created_at = self._clock()

        conversation = self._store.get_conversation(conversation_id)
        sender = viewer_participant(conversation.participants if conversation else (), viewer)

        attachments = tuple(
            Attachment(
                id=f"{temporary_id}-attachment-{index}",
                message_id=temporary_id,
                name=file.name,
                url=None,
                content_type=file.content_type or None,
                size=file.size,
                created_at=created_at,
                status=DeliveryStatus.PENDING,
            )
            for index, file in enumerate(request.attachments)
        )
        optimistic = Message(
            id=temporary_id,
            conversation_id=conversation_id,
            content=content,
            topic=request.topic,
            created_at=created_at,
            sender=sender,
            attachments=attachments,
            status=DeliveryStatus.PENDING,
            optimistic_key=temporary_id,
        )

        self._store.update_messages(append_message, optimistic)
        self._store.update_conversations(promote_conversation, conversation_id, optimistic, created_at)
        return optimistic

    async def _deliver(self, request: SendRequest, optimistic: Message, viewer: MessagingUser) -> Message:
        conversation_id = optimistic.conversation_id
        temporary_id = optimistic.id

        try:
            row = await self._backend.insert_message(
                conversation_id,
                viewer.id,
                viewer.role,
                optimistic.content,
                request.topic,
            )
        except Exception as e:
            logger.warning("Message insert into %s failed: %s", conversation_id, e)
            self._store.set_error(error_message(e, SEND_FAILED_ERROR))
            self._store.update_messages(set_message_status, conversation_id, temporary_id, DeliveryStatus.ERROR)
            await self._record(viewer, None, "failed", error_message(e, SEND_FAILED_ERROR))
            return replace(optimistic, status=DeliveryStatus.ERROR)

        server_id = row["id"]
        self._store.update_messages(assign_server_id, conversation_id, temporary_id, server_id)

        outcomes = []
        for index, file in enumerate(request.attachments):
            outcomes.append(
                await self._deliver_attachment(conversation_id, server_id, index, file, optimistic.created_at)
            )

        failed = [a for a in outcomes if a.status == DeliveryStatus.ERROR]
        conversation = self._store.get_conversation(conversation_id)
        try:
            final = format_message(
                dict(row, conversation_id=row.get("conversation_id", conversation_id), attachments=[]),
                conversation.participants if conversation else (),
                optimistic.sender,
                DeliveryStatus.ERROR if failed else DeliveryStatus.SENT,
                outcomes,
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Stored message %s could not be read back: %s", server_id, e)
            self._store.set_error(SEND_FAILED_ERROR)
            self._store.update_messages(set_message_status, conversation_id, temporary_id, DeliveryStatus.ERROR)
            await self._record(viewer, server_id, "failed", str(e))
            return replace(optimistic, status=DeliveryStatus.ERROR, server_id=server_id)

        before = self._store.messages_by_conversation
        self._store.update_messages(reconcile_message, conversation_id, temporary_id, final)
        if self._store.messages_by_conversation is not before:
            self._store.update_conversations(promote_conversation, conversation_id, final, final.created_at)

        if failed:
            logger.warning("Message %s delivered with %d failed attachment(s)", server_id, len(failed))
            await self._record(viewer, server_id, "failed", f"{len(failed)} attachment(s) failed")
        else:
            logger.debug("Message %s delivered to %s", server_id, conversation_id)
            await self._record(viewer, server_id, "success", None)
        return final

    async def _deliver_attachment(
        self,
        conversation_id: str,
        message_id: str,
        index: int,
        file: LocalFile,
        created_at: datetime,
    ) -> Attachment:
        content_type = file.content_type or None
        failed = Attachment(
            id=f"{message_id}-attachment-error-{index}",
            message_id=message_id,
            name=file.name,
            url=None,
            content_type=content_type,
            size=file.size,
            created_at=created_at,
            status=DeliveryStatus.ERROR,
        )

        path = build_storage_path(conversation_id, message_id, index, file.name, self._clock())
        try:
            stored_path = await self._backend.upload_file(path, file.data, content_type)
            url = self._backend.get_public_url(stored_path)
        except Exception as e:
            logger.warning("Upload of %s failed: %s", file.name, e)
            self._store.set_error(error_message(e))
            return failed

        try:
            row = await self._backend.insert_attachment(
                message_id, file.name, content_type, file.size, stored_path, url
            )
        except Exception as e:
            logger.warning("Attachment row for %s failed: %s", file.name, e)
            self._store.set_error(error_message(e, ATTACHMENT_ROW_FAILED_ERROR))
            return replace(failed, url=url)

        return format_attachment(row, DeliveryStatus.SENT)

    async def _record(self, viewer: MessagingUser, message_id: Optional[str], status: str, details: Optional[str]) -> None:
        if self._audit is None:
            return
        try:
            await self._audit.log_event(
                action="message_send",
                resource="messaging_system",
                resource_id=message_id,
                user_id=viewer.id,
                user_name=viewer.name,
                user_role=viewer.role,
                status=status,
                details=details,
            )
        except Exception as e:
            logger.warning("Audit event for message send not recorded: %s", e)
