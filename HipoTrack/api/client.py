"""
Supabase backend client for HipoTrack.
Implements the messaging backend contract over PostgREST, Storage and
the realtime feed. Uses a shared aiohttp.ClientSession for connection
pooling.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import aiohttp

from HipoTrack.api.interfaces import InsertHandler, Row, Unsubscribe
from HipoTrack.api.realtime import RealtimeClient
from HipoTrack.config import config
from HipoTrack.core.client.utils.constants import (
    API_CONNECT_TIMEOUT_SECONDS,
    API_TIMEOUT_SECONDS,
    AUDIT_EVENTS_TABLE,
    ATTACHMENTS_TABLE,
    CONVERSATIONS_TABLE,
    MESSAGES_TABLE,
)
from HipoTrack.core.client.utils.exceptions import AuthenticationError, BackendError, StorageError
from HipoTrack.core.logging.utils import timed

logger = logging.getLogger(__name__)

ATTACHMENT_COLUMNS = "id,message_id,name,url,content_type,storage_path,size,created_at"
MESSAGE_COLUMNS = "id,conversation_id,content,created_at,sender_id,sender_role,topic"
PARTICIPANT_COLUMNS = "user_id,role,display_name,avatar_url"

# ``member`` is inner-joined only to filter by viewer; ``participants``
# carries the whole roster.
CONVERSATION_SELECT = (
    "id,title,updated_at,"
    "member:participants!inner(user_id),"
    f"participants({PARTICIPANT_COLUMNS}),"
    f"latest_message:messages({MESSAGE_COLUMNS},attachments({ATTACHMENT_COLUMNS}))"
)
MESSAGE_SELECT = f"{MESSAGE_COLUMNS},attachments({ATTACHMENT_COLUMNS})"
AUDIT_SEARCH_COLUMNS = ("user_name", "action", "resource", "ip_address", "details", "location")


class SessionManager:
    """
    Singleton manager for aiohttp.ClientSession.

    Provides a shared session across all backend clients,
    enabling connection pooling and reducing overhead.
    """

    _instance: Optional['SessionManager'] = None
    _session: Optional[aiohttp.ClientSession] = None
    _lock: Optional[asyncio.Lock] = None

    def __new__(cls) -> 'SessionManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so the lock binds to the running loop
        if self._lock is None:
            SessionManager._lock = asyncio.Lock()
        return self._lock

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared aiohttp session."""
        if self._session is None or self._session.closed:
            async with self._get_lock():
                if self._session is None or self._session.closed:
                    connector = aiohttp.TCPConnector(
                        limit=0,
                        limit_per_host=0,
                        ttl_dns_cache=300,
                        enable_cleanup_closed=True
                    )
                    timeout = aiohttp.ClientTimeout(
                        total=API_TIMEOUT_SECONDS,
                        connect=API_CONNECT_TIMEOUT_SECONDS
                    )
                    SessionManager._session = aiohttp.ClientSession(
                        connector=connector,
                        timeout=timeout,
                    )
        return self._session

    async def close(self) -> None:
        """Close the shared session."""
        async with self._get_lock():
            if self._session and not self._session.closed:
                await self._session.close()
            SessionManager._session = None

    @property
    def is_closed(self) -> bool:
        """Check if the session is closed."""
        return self._session is None or self._session.closed


_session_manager = SessionManager()


class SupabaseBackend:
    """
    Messaging backend on a Supabase project.

    Row access goes through PostgREST with the viewer's access token, so
    row-level security decides what each viewer may read and write.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        anon_key: Optional[str] = None,
        access_token: Optional[str] = None,
        bucket: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        realtime: Optional[RealtimeClient] = None,
    ):
        """
        Initialize the backend client.

        Args:
            url (str): Supabase project URL (defaults to SUPABASE_URL)
            anon_key (str): Project anon key (defaults to SUPABASE_ANON_KEY)
            access_token (str): Signed-in user's JWT; the anon key is used when absent
            bucket (str): Storage bucket for message attachments
            session: aiohttp session to use instead of the shared one
            realtime: Realtime client to use instead of a new one
        """
        self.url = (url or config.SUPABASE_URL).rstrip("/")
        self.anon_key = anon_key or config.SUPABASE_ANON_KEY
        if not self.url or not self.anon_key:
            raise ValueError(
                "Missing Supabase settings. Please set SUPABASE_URL and SUPABASE_ANON_KEY."
            )
        self.access_token = access_token or config.SUPABASE_ACCESS_TOKEN
        self.bucket = bucket or config.ATTACHMENT_BUCKET
        self._session = session
        self.realtime = realtime or RealtimeClient(self.url, self.anon_key, self.access_token)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session
        return await _session_manager.get_session()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        error_cls: type = BackendError,
    ) -> Tuple[Any, Dict[str, str]]:
        """
        Make a request to the project and decode the JSON body.

        Returns:
            tuple: (decoded body or None, response headers)

        Raises:
            AuthenticationError: for 401/403 responses
            error_cls: for any other failed request
        """
        url = f"{self.url}{path}"
        session = await self._get_session()
        try:
            async with session.request(
                method,
                url,
                params=params,
                json=json,
                data=data,
                headers=self._headers(headers),
            ) as response:
                body = None
                if response.content_type == "application/json":
                    body = await response.json()
                if response.status >= 400:
                    logger.debug("%s %s failed with status %d", method, path, response.status)
                    message = _error_text(body) or f"Request failed with status {response.status}"
                    cls = AuthenticationError if response.status in (401, 403) else error_cls
                    raise cls(message, status=response.status, details={"path": path})
                return body, dict(response.headers)
        except aiohttp.ClientError as e:
            raise error_cls(f"Request failed: {e}", details={"path": path}) from e
        except asyncio.TimeoutError as e:
            raise error_cls("Request timed out", details={"path": path}) from e

    async def _select(self, table: str, params: Dict[str, str]) -> List[Row]:
        body, _ = await self._request("GET", f"/rest/v1/{table}", params=params)
        return body or []

    async def _insert(self, table: str, payload: Row) -> Row:
        body, _ = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if not body:
            raise BackendError(f"Insert into {table} returned no row")
        return body[0] if isinstance(body, list) else body

    # -- messaging ------------------------------------------------------

    @timed("list_conversations_for_user")
    async def list_conversations_for_user(self, user_id: str) -> List[Row]:
        return await self._select(CONVERSATIONS_TABLE, {
            "select": CONVERSATION_SELECT,
            "member.user_id": f"eq.{user_id}",
            "latest_message.order": "created_at.desc",
            "latest_message.limit": "1",
            "order": "updated_at.desc",
        })

    @timed("list_messages")
    async def list_messages(self, conversation_id: str) -> List[Row]:
        return await self._select(MESSAGES_TABLE, {
            "select": MESSAGE_SELECT,
            "conversation_id": f"eq.{conversation_id}",
            "order": "created_at.asc",
        })

    @timed("list_attachments")
    async def list_attachments(self, message_id: str) -> List[Row]:
        return await self._select(ATTACHMENTS_TABLE, {
            "select": ATTACHMENT_COLUMNS,
            "message_id": f"eq.{message_id}",
        })

    @timed("insert_message")
    async def insert_message(
        self,
        conversation_id: str,
        sender_id: str,
        sender_role: str,
        content: str,
        topic: Optional[str],
    ) -> Row:
        return await self._insert(MESSAGES_TABLE, {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "sender_role": sender_role,
            "content": content,
            "topic": topic,
        })

    @timed("upload_file")
    async def upload_file(self, bucket_path: str, data: bytes, content_type: Optional[str]) -> str:
        await self._request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{quote(bucket_path)}",
            data=data,
            headers={
                "Content-Type": content_type or "application/octet-stream",
                "x-upsert": "false",
            },
            error_cls=StorageError,
        )
        return bucket_path

    def get_public_url(self, storage_path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(storage_path)}"

    @timed("insert_attachment")
    async def insert_attachment(
        self,
        message_id: str,
        name: str,
        content_type: Optional[str],
        size: Optional[int],
        storage_path: str,
        url: str,
    ) -> Row:
        return await self._insert(ATTACHMENTS_TABLE, {
            "message_id": message_id,
            "name": name,
            "content_type": content_type,
            "size": size,
            "storage_path": storage_path,
            "url": url,
        })

    async def subscribe_to_inserts(self, table: str, on_insert: InsertHandler) -> Unsubscribe:
        return await self.realtime.subscribe(table, on_insert)

    # -- audit ----------------------------------------------------------

    async def insert_audit_event(self, payload: Row) -> Row:
        return await self._insert(AUDIT_EVENTS_TABLE, payload)

    @timed("list_audit_events")
    async def list_audit_events(self, filters: Row, offset: int, limit: int) -> Tuple[List[Row], int]:
        params = {"select": "*", "order": "timestamp.desc"}
        for column in ("status", "risk_level", "user_role", "user_id"):
            if filters.get(column):
                params[column] = f"eq.{filters[column]}"
        if filters.get("date_from") and filters.get("date_to"):
            params["and"] = f"(timestamp.gte.{filters['date_from']},timestamp.lte.{filters['date_to']})"
        elif filters.get("date_from"):
            params["timestamp"] = f"gte.{filters['date_from']}"
        elif filters.get("date_to"):
            params["timestamp"] = f"lte.{filters['date_to']}"
        if filters.get("search"):
            term = f"*{str(filters['search']).lower()}*"
            params["or"] = "(" + ",".join(f"{column}.ilike.{term}" for column in AUDIT_SEARCH_COLUMNS) + ")"

        body, headers = await self._request(
            "GET",
            f"/rest/v1/{AUDIT_EVENTS_TABLE}",
            params=params,
            headers={
                "Prefer": "count=exact",
                "Range-Unit": "items",
                "Range": f"{offset}-{offset + limit - 1}",
            },
        )
        rows = body or []
        return rows, _total_from_content_range(headers.get("Content-Range"), len(rows))

    async def close(self) -> None:
        """Close the realtime socket."""
        await self.realtime.close()


def _error_text(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        return body.get("message") or body.get("error_description") or body.get("error")
    return None


def _total_from_content_range(value: Optional[str], fallback: int) -> int:
    """Total from a PostgREST ``Content-Range`` header such as ``0-19/57``."""
    if not value or "/" not in value:
        return fallback
    total = value.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else fallback


async def close_session() -> None:
    """
    Close the shared aiohttp session.

    Should be called when the application shuts down
    to properly release resources.
    """
    await _session_manager.close()


__all__ = ["SupabaseBackend", "SessionManager", "close_session"]
