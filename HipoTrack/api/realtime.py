"""
Supabase realtime change feed over a websocket.

Speaks the Phoenix channel protocol used by Supabase realtime: one socket,
one channel per table, ``phx_join``/``phx_leave`` to manage channels and a
periodic ``heartbeat`` to keep the socket open. Only ``INSERT`` changes are
requested; each inserted ``record`` is handed to the table's handlers.
"""

import asyncio
import inspect
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.parse import urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from HipoTrack.api.interfaces import InsertHandler, Unsubscribe
from HipoTrack.core.client.utils.constants import (
    MAX_RECONNECT_ATTEMPTS,
    REALTIME_HEARTBEAT_SECONDS,
    RECONNECT_DELAY_SECONDS,
)
from HipoTrack.core.client.utils.exceptions import RealtimeConnectionError

logger = logging.getLogger(__name__)

PHOENIX_TOPIC = "phoenix"


def build_realtime_url(project_url: str, api_key: str) -> str:
    """Websocket endpoint for a Supabase project URL."""
    parts = urlsplit(project_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    path = parts.path.rstrip("/") + "/realtime/v1/websocket"
    query = urlencode({"apikey": api_key, "vsn": "1.0.0"})
    return urlunsplit((scheme, parts.netloc, path, query, ""))


@dataclass
class _Channel:
    topic: str
    table: str
    schema: str = "public"
    handlers: List[InsertHandler] = field(default_factory=list)

    def join_payload(self, access_token: Optional[str]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [
                    {"event": "INSERT", "schema": self.schema, "table": self.table},
                ],
            },
        }
        if access_token:
            payload["access_token"] = access_token
        return payload


class RealtimeClient:
    """
    Shared realtime socket for all table subscriptions of one backend.

    The socket is opened by the first subscription and closed when the last
    one is released. Coroutine handlers run as independent tasks so a slow
    handler does not hold up the feed.
    """

    def __init__(
        self,
        project_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        heartbeat_interval: float = REALTIME_HEARTBEAT_SECONDS,
        reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        connect: Callable = ws_connect,
    ):
        self.endpoint = build_realtime_url(project_url, api_key)
        self.access_token = access_token or api_key
        self._heartbeat_interval = heartbeat_interval
        self._reconnect_attempts = reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._connect = connect

        self._ws = None
        self._channels: Dict[str, _Channel] = {}
        self._refs = itertools.count(1)
        self._lock = asyncio.Lock()
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Task] = set()
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def topics(self) -> List[str]:
        return list(self._channels)

    async def subscribe(self, table: str, handler: InsertHandler, schema: str = "public") -> Unsubscribe:
        """Receive inserted rows of ``table``; returns an async unsubscribe callable."""
        topic = f"realtime:{schema}:{table}"
        async with self._lock:
            await self._ensure_connected()
            channel = self._channels.get(topic)
            if channel is None:
                channel = _Channel(topic=topic, table=table, schema=schema)
                self._channels[topic] = channel
                await self._join(channel)
            channel.handlers.append(handler)

        async def unsubscribe() -> None:
            async with self._lock:
                if handler in channel.handlers:
                    channel.handlers.remove(handler)
                if not channel.handlers and self._channels.get(topic) is channel:
                    del self._channels[topic]
                    await self._leave(channel)
                if not self._channels:
                    await self._shutdown()

        return unsubscribe

    async def close(self) -> None:
        """Drop every channel and close the socket."""
        async with self._lock:
            self._channels.clear()
            await self._shutdown()

    # -- connection -----------------------------------------------------

    async def _ensure_connected(self) -> None:
        if self._ws is not None:
            return
        self._closing = False
        try:
            self._ws = await self._connect(self.endpoint)
        except (OSError, WebSocketException) as e:
            raise RealtimeConnectionError(f"Realtime connection failed: {e}") from e
        logger.info("Realtime socket connected")
        self._reader_task = asyncio.create_task(self._read_loop())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _shutdown(self) -> None:
        self._closing = True
        current = asyncio.current_task()
        for task in (self._heartbeat_task, self._reader_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._heartbeat_task = None
        self._reader_task = None
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            logger.info("Realtime socket closed")

    async def _reconnect(self) -> bool:
        for attempt in range(1, self._reconnect_attempts + 1):
            await asyncio.sleep(self._reconnect_delay)
            if self._closing:
                return False
            try:
                self._ws = await self._connect(self.endpoint)
                for channel in list(self._channels.values()):
                    await self._join(channel)
            except (OSError, WebSocketException) as e:
                logger.warning("Realtime reconnect attempt %d/%d failed: %s",
                               attempt, self._reconnect_attempts, e)
                self._ws = None
                continue
            logger.info("Realtime socket reconnected after %d attempt(s)", attempt)
            return True
        logger.error("Realtime feed lost; giving up after %d attempts", self._reconnect_attempts)
        return False

    # -- frames ---------------------------------------------------------

    async def _send(self, topic: str, event: str, payload: Dict[str, Any]) -> None:
        ref = str(next(self._refs))
        frame = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        if event == "phx_join":
            frame["join_ref"] = ref
        await self._ws.send(json.dumps(frame))

    async def _join(self, channel: _Channel) -> None:
        await self._send(channel.topic, "phx_join", channel.join_payload(self.access_token))
        logger.debug("Joined %s", channel.topic)

    async def _leave(self, channel: _Channel) -> None:
        if self._ws is None:
            return
        try:
            await self._send(channel.topic, "phx_leave", {})
        except ConnectionClosed:
            pass
        logger.debug("Left %s", channel.topic)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            if self._ws is None:
                continue
            try:
                await self._send(PHOENIX_TOPIC, "heartbeat", {})
            except ConnectionClosed:
                # The reader notices the closed socket and reconnects
                continue

    async def _read_loop(self) -> None:
        while True:
            ws = self._ws
            try:
                async for raw in ws:
                    self.dispatch(raw)
            except ConnectionClosed as e:
                logger.warning("Realtime socket closed: %s", e)
            if self._closing:
                return
            self._ws = None
            if not await self._reconnect():
                return

    def dispatch(self, raw) -> None:
        """Route one incoming frame."""
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed realtime frame")
            return

        event = frame.get("event")
        payload = frame.get("payload") or {}

        if event == "postgres_changes":
            data = payload.get("data") or {}
            if data.get("type") != "INSERT":
                return
            channel = self._channels.get(frame.get("topic"))
            if channel is None:
                return
            record = data.get("record") or {}
            for handler in list(channel.handlers):
                self._run_handler(handler, record)
        elif event == "phx_reply":
            if payload.get("status") != "ok":
                logger.warning("Realtime request on %s rejected: %s", frame.get("topic"), payload.get("response"))
        elif event in ("phx_error", "phx_close"):
            logger.warning("Realtime channel %s reported %s", frame.get("topic"), event)
        elif event == "system" and payload.get("status") == "error":
            logger.warning("Realtime system error on %s: %s", frame.get("topic"), payload.get("message"))

    def _run_handler(self, handler: InsertHandler, record: Dict[str, Any]) -> None:
        try:
            result = handler(record)
        except Exception:
            logger.exception("Realtime handler failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Realtime handler failed: %s", exc, exc_info=exc)
