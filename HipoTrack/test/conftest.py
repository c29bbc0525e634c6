"""
Test configuration and fixtures for the HipoTrack messaging core.

Provides:
- In-memory backend with controllable latency and failure injection
- Row and model builders
- Store, viewer and service fixtures
"""

import asyncio
import inspect
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from HipoTrack.core.client.messaging.models import (
    DeliveryStatus,
    Message,
    MessagingUser,
    Participant,
)
from HipoTrack.core.client.messaging.services import MessagingStore
from HipoTrack.core.client.utils.constants import ATTACHMENTS_TABLE, MESSAGES_TABLE
from HipoTrack.core.client.utils.exceptions import BackendError

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

Row = Dict[str, Any]


def iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


class FakeBackend:
    """
    In-memory stand-in for the Supabase project.

    ``delay(op, seconds, when=...)`` and ``fail(op, error, when=...)`` apply
    to calls of ``op`` whose key contains ``when`` (message content for
    ``insert_message``, storage path for ``upload_file``, file name for
    ``insert_attachment``, ids for the list calls). With ``auto_push`` set,
    every inserted message and attachment row is pushed to subscribers
    before the insert returns, like a fast realtime feed.
    """

    def __init__(self):
        self.conversations: List[Row] = []
        self.messages: Dict[str, List[Row]] = {}
        self.attachments: Dict[str, List[Row]] = {}
        self.storage: Dict[str, bytes] = {}
        self.audit_rows: List[Row] = []
        self.handlers: Dict[str, List[Callable]] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.auto_push = False
        self._delays: List[Tuple[str, Optional[str], float]] = []
        self._failures: List[Tuple[str, Optional[str], Exception]] = []
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)

    # -- test controls --------------------------------------------------

    def delay(self, op: str, seconds: float, when: Optional[str] = None) -> None:
        self._delays.append((op, when, seconds))

    def fail(self, op: str, error: Optional[Exception] = None, when: Optional[str] = None) -> None:
        self._failures.append((op, when, error or BackendError(f"{op} failed")))

    def calls_to(self, op: str) -> List[Any]:
        return [key for name, key in self.calls if name == op]

    def now(self) -> str:
        return iso(T0 + timedelta(minutes=10, seconds=next(self._ticks)))

    def add_conversation(self, row: Row) -> Row:
        self.conversations.append(row)
        self.messages.setdefault(row["id"], [])
        return row

    def add_message(self, row: Row) -> Row:
        self.messages.setdefault(row["conversation_id"], []).append(row)
        return row

    async def push(self, table: str, row: Row) -> None:
        for handler in list(self.handlers.get(table, [])):
            result = handler(dict(row))
            if inspect.isawaitable(result):
                await result

    async def _call(self, op: str, key: Any) -> None:
        self.calls.append((op, key))
        text = str(key)
        for name, when, seconds in self._delays:
            if name == op and (when is None or when in text):
                await asyncio.sleep(seconds)
                break
        for name, when, error in self._failures:
            if name == op and (when is None or when in text):
                raise error

    # -- MessagingBackend -----------------------------------------------

    async def list_conversations_for_user(self, user_id: str) -> List[Row]:
        await self._call("list_conversations_for_user", user_id)
        return [
            dict(row) for row in self.conversations
            if any(p["user_id"] == user_id for p in row.get("participants", []))
        ]

    async def list_messages(self, conversation_id: str) -> List[Row]:
        await self._call("list_messages", conversation_id)
        return [
            dict(row, attachments=list(self.attachments.get(row["id"], [])))
            for row in self.messages.get(conversation_id, [])
        ]

    async def list_attachments(self, message_id: str) -> List[Row]:
        await self._call("list_attachments", message_id)
        return list(self.attachments.get(message_id, []))

    async def insert_message(self, conversation_id, sender_id, sender_role, content, topic) -> Row:
        await self._call("insert_message", content)
        row = {
            "id": f"msg-{next(self._ids)}",
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "sender_role": sender_role,
            "content": content,
            "topic": topic,
            "created_at": self.now(),
        }
        self.add_message(row)
        if self.auto_push:
            await self.push(MESSAGES_TABLE, row)
        return dict(row)

    async def upload_file(self, bucket_path: str, data: bytes, content_type: Optional[str]) -> str:
        await self._call("upload_file", bucket_path)
        self.storage[bucket_path] = data
        return bucket_path

    def get_public_url(self, storage_path: str) -> str:
        return f"https://files.test/{storage_path}"

    async def insert_attachment(self, message_id, name, content_type, size, storage_path, url) -> Row:
        await self._call("insert_attachment", name)
        row = {
            "id": f"att-{next(self._ids)}",
            "message_id": message_id,
            "name": name,
            "url": url,
            "content_type": content_type,
            "storage_path": storage_path,
            "size": size,
            "created_at": self.now(),
        }
        self.attachments.setdefault(message_id, []).append(row)
        if self.auto_push:
            await self.push(ATTACHMENTS_TABLE, row)
        return dict(row)

    async def subscribe_to_inserts(self, table: str, on_insert: Callable):
        await self._call("subscribe_to_inserts", table)
        self.handlers.setdefault(table, []).append(on_insert)

        async def unsubscribe() -> None:
            self.calls.append(("unsubscribe", table))
            if on_insert in self.handlers.get(table, []):
                self.handlers[table].remove(on_insert)

        return unsubscribe

    async def insert_audit_event(self, payload: Row) -> Row:
        await self._call("insert_audit_event", payload.get("action"))
        self.audit_rows.append(dict(payload))
        return dict(payload)

    async def list_audit_events(self, filters: Row, offset: int, limit: int):
        await self._call("list_audit_events", filters)
        return list(self.audit_rows[offset:offset + limit]), len(self.audit_rows)


class MessagingDataGenerator:
    """Build backend rows and models for tests."""

    @staticmethod
    def participant_row(user_id: str, display_name: str, role: str = "borrower") -> Row:
        return {"user_id": user_id, "display_name": display_name, "role": role, "avatar_url": None}

    @staticmethod
    def message_row(
        message_id: str,
        conversation_id: str,
        sender_id: str,
        content: str,
        minute: int = 0,
        topic: Optional[str] = None,
        sender_role: str = "borrower",
    ) -> Row:
        return {
            "id": message_id,
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "sender_role": sender_role,
            "content": content,
            "topic": topic,
            "created_at": iso(T0 + timedelta(minutes=minute)),
        }

    @staticmethod
    def attachment_row(attachment_id: str, message_id: str, name: str = "stub.pdf") -> Row:
        return {
            "id": attachment_id,
            "message_id": message_id,
            "name": name,
            "url": f"https://files.test/{name}",
            "content_type": "application/pdf",
            "storage_path": name,
            "size": 4,
            "created_at": iso(T0),
        }

    @staticmethod
    def conversation_row(
        conversation_id: str,
        participants: List[Row],
        minute: int = 0,
        title: Optional[str] = None,
        latest: Optional[Row] = None,
    ) -> Row:
        return {
            "id": conversation_id,
            "title": title,
            "updated_at": iso(T0 + timedelta(minutes=minute)),
            "participants": participants,
            "latest_message": [latest] if latest else [],
        }

    @staticmethod
    def participant(user_id: str, display_name: str = "", role: str = "borrower", current: bool = False) -> Participant:
        return Participant(id=user_id, display_name=display_name or user_id, role=role, is_current_user=current)

    @staticmethod
    def message(
        message_id: str,
        conversation_id: str = "C1",
        content: str = "hello",
        minute: int = 0,
        sender: Optional[Participant] = None,
        **changes,
    ) -> Message:
        return Message(
            id=message_id,
            conversation_id=conversation_id,
            content=content,
            topic=None,
            created_at=T0 + timedelta(minutes=minute),
            sender=sender or Participant(id="U1", display_name="Una", role="borrower"),
            **changes,
        )

    @staticmethod
    def pending(temporary_id: str, conversation_id: str = "C1", content: str = "hello", **changes) -> Message:
        return MessagingDataGenerator.message(
            temporary_id,
            conversation_id,
            content,
            status=DeliveryStatus.PENDING,
            optimistic_key=temporary_id,
            **changes,
        )


@pytest.fixture(scope="session")
def data() -> MessagingDataGenerator:
    """Provide the row and model builder."""
    return MessagingDataGenerator()


@pytest.fixture
def borrower() -> MessagingUser:
    return MessagingUser(id="U1", name="Una Borrower", role="borrower")


@pytest.fixture
def officer() -> MessagingUser:
    return MessagingUser(id="U2", name="Lee Officer", role="loan_officer")


@pytest.fixture
def backend() -> FakeBackend:
    """Empty fake backend."""
    return FakeBackend()


@pytest.fixture
def seeded_backend(backend: FakeBackend, data: MessagingDataGenerator) -> FakeBackend:
    """
    Backend with two conversations for U1:
    C1 with U2 (older) and C2 with U3 (newer, one message).
    """
    u1 = data.participant_row("U1", "Una Borrower", "borrower")
    u2 = data.participant_row("U2", "Lee Officer", "loan_officer")
    u3 = data.participant_row("U3", "Ray Processor", "processor")
    first = data.message_row("m-1", "C2", "U3", "Appraisal scheduled", minute=5, sender_role="processor")

    backend.add_conversation(data.conversation_row("C1", [u1, u2], minute=1, title="Loan 1042"))
    backend.add_conversation(data.conversation_row("C2", [u1, u3], minute=5, latest=first))
    backend.add_message(first)
    return backend


@pytest.fixture
def store() -> MessagingStore:
    return MessagingStore()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "scenario: end-to-end messaging scenario"
    )
