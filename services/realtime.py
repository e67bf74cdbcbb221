"""
Realtime Channel Module

A minimal Supabase Realtime client: one Phoenix channel over a websocket,
joined with a ``postgres_changes`` filter for a single table. Decoded row
changes are handed to a callback in arrival order.

A callback that raises is logged and skipped; the stream keeps delivering.
"""

import asyncio
import inspect
import json
from typing import Optional, Dict, Any, Callable
from urllib.parse import urlencode

import aiohttp

from config import settings
from utils.exceptions import MalformedEventError, SubscriptionError
from utils.helpers import safe_get
from utils.logger import get_logger

logger = get_logger(__name__)

CHANGE_TYPES = ("INSERT", "UPDATE", "DELETE")

ChangeHandler = Callable[[Dict[str, Any]], Any]


def realtime_url(base_url: str, api_key: str) -> str:
    """Websocket endpoint for a project URL (https -> wss)."""
    ws_base = base_url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
    query = urlencode({"apikey": api_key, "vsn": settings.REALTIME_PROTOCOL_VERSION})
    return f"{ws_base}/realtime/v1/websocket?{query}"


def parse_postgres_change(message: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode a ``postgres_changes`` channel message.

    Args:
        message: The decoded websocket frame

    Returns:
        Dict: ``type``, ``table``, ``record`` and ``old_record`` (rows in
        column naming)

    Raises:
        MalformedEventError: If the frame is not a usable row change
    """
    data = safe_get(message, "payload", "data")
    if not isinstance(data, dict):
        raise MalformedEventError(f"postgres_changes frame without data: {message!r}")

    change_type = str(data.get("type", "")).upper()
    if change_type not in CHANGE_TYPES:
        raise MalformedEventError(f"unknown change type {data.get('type')!r}")

    record = data.get("record") or {}
    old_record = data.get("old_record") or {}
    if not isinstance(record, dict) or not isinstance(old_record, dict):
        raise MalformedEventError("change rows must be objects")

    return {
        "type": change_type,
        "table": data.get("table", ""),
        "record": record,
        "old_record": old_record,
    }


class RealtimeChannel:
    """One joined Phoenix channel watching one table."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str,
        on_change: ChangeHandler,
        access_token: Optional[str] = None,
        schema: str = "public",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the channel.

        Args:
            base_url: Project URL, e.g. ``https://xyz.supabase.co``
            api_key: The anon key
            table: Table to watch
            on_change: Called with each decoded change; may be a coroutine function
            access_token: Signed-in user's JWT, for row level security
            schema: Database schema of the table
            session: Reuse an aiohttp session instead of owning one
        """
        self.url = realtime_url(base_url, api_key)
        self.api_key = api_key
        self.table = table
        self.schema = schema
        self.topic = f"realtime:{schema}:{table}"
        self.on_change = on_change
        self.access_token = access_token or api_key
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._ref = 0
        self.joined = False

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    async def _send(self, topic: str, event: str, payload: Dict[str, Any]) -> str:
        ref = self._next_ref()
        await self._ws.send_json({"topic": topic, "event": event, "payload": payload, "ref": ref})
        return ref

    def _join_payload(self) -> Dict[str, Any]:
        return {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [
                    {"event": "*", "schema": self.schema, "table": self.table},
                ],
            },
            "access_token": self.access_token,
        }

    async def connect(self) -> None:
        """
        Open the websocket and join the channel.

        Raises:
            SubscriptionError: If the connection or join fails
        """
        try:
            if self._session is None:
                self._session = aiohttp.ClientSession()
            self._ws = await self._session.ws_connect(self.url)
            join_ref = await self._send(self.topic, "phx_join", self._join_payload())
            await asyncio.wait_for(self._await_join(join_ref), timeout=settings.REALTIME_JOIN_TIMEOUT)
        except SubscriptionError:
            await self.close()
            raise
        except Exception as e:
            logger.error(f"Error joining realtime channel {self.topic}: {e}")
            await self.close()
            raise SubscriptionError(f"Failed to join {self.topic}: {e}") from e

        self.joined = True
        self._reader_task = asyncio.create_task(self._read_loop())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info(f"Joined realtime channel {self.topic}")

    async def _await_join(self, join_ref: str) -> None:
        while True:
            msg = await self._ws.receive()
            if msg.type != aiohttp.WSMsgType.TEXT:
                raise SubscriptionError(f"Websocket closed during join ({msg.type})")
            frame = json.loads(msg.data)
            if frame.get("event") == "phx_reply" and frame.get("ref") == join_ref:
                status = (frame.get("payload") or {}).get("status")
                if status != "ok":
                    response = (frame.get("payload") or {}).get("response")
                    raise SubscriptionError(f"Join rejected for {self.topic}: {response}")
                return

    async def _heartbeat_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(settings.REALTIME_HEARTBEAT_INTERVAL)
                await self._send("phoenix", "heartbeat", {})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Realtime heartbeat stopped for {self.topic}: {e}")

    async def _read_loop(self) -> None:
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self.dispatch(msg.data)
            elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break
        self.joined = False
        logger.info(f"Realtime stream for {self.topic} ended")

    async def dispatch(self, raw: str) -> None:
        """
        Route one websocket frame.

        Row changes go to the callback; failures decoding or handling a
        frame are logged and never propagate.
        """
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring non-JSON realtime frame on {self.topic}")
            return

        event = frame.get("event")
        if event == "postgres_changes":
            try:
                change = parse_postgres_change(frame)
            except MalformedEventError as e:
                logger.warning(f"Dropping malformed realtime change on {self.topic}: {e}")
                return
            try:
                result = self.on_change(change)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error handling realtime change on {self.topic}: {e}")
        elif event in ("phx_error", "phx_close"):
            logger.warning(f"Realtime channel {self.topic} reported {event}")
        elif event == "system":
            logger.debug(f"Realtime system message: {frame.get('payload')}")

    async def close(self) -> None:
        """Leave the channel and release the connection. Safe to call twice."""
        for task in (self._heartbeat_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
        self._heartbeat_task = self._reader_task = None

        if self._ws is not None and not self._ws.closed:
            if self.joined:
                try:
                    await self._send(self.topic, "phx_leave", {})
                except Exception as e:
                    logger.debug(f"phx_leave failed for {self.topic}: {e}")
            await self._ws.close()
        self._ws = None
        self.joined = False

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
