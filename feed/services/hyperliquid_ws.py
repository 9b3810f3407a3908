"""
Hyperliquid WebSocket subscription source.

One socket per source. A background reader decodes frames into a bounded
queue (oldest message dropped when full) and a heartbeat task sends the
application-level ping Hyperliquid requires at least once a minute.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed
from hyperliquid.utils.types import Subscription, WsMsg

from feed.errors import SubscriptionError
from feed.observability.metrics import record_ws_ping, record_ws_queue_drop

logger = logging.getLogger("market_ws")

HEARTBEAT_INTERVAL = 50  # seconds; server drops idle sockets after 60
DEFAULT_QUEUE_SIZE = 256

_CLOSED = object()


class HyperliquidWSSource:
    """Live feed over a single websocket, implementing SubscriptionSource."""

    def __init__(
        self,
        ws_url: str,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        ping_interval: float = HEARTBEAT_INTERVAL,
        connect: Optional[Callable[..., Any]] = None,
    ):
        self.ws_url = ws_url
        self.ping_interval = ping_interval
        self._connect = connect or websockets.connect
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._next_id = 0
        self.subscriptions: Dict[int, Subscription] = {}
        self.connected = False
        self.closed_reason: Optional[str] = None

        # Health metrics
        self.total_messages = 0
        self.dropped_messages = 0
        self.pings_sent = 0
        self.last_message_ts = 0.0

    async def connect(self) -> None:
        if self.connected:
            return
        try:
            self.ws = await self._connect(self.ws_url, ping_interval=None, close_timeout=10)
        except Exception as e:
            raise SubscriptionError(f"Connect to {self.ws_url} failed: {e}", details={"url": self.ws_url}) from e
        self.connected = True
        self.closed_reason = None
        self._reader_task = asyncio.create_task(self._reader_loop(), name="market_ws_reader")
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="market_ws_heartbeat")
        logger.info(f"[market_ws] Connected to {self.ws_url}")

    async def subscribe(self, subscription: Subscription) -> int:
        if self.ws is None:
            await self.connect()
        await self._send({"method": "subscribe", "subscription": subscription})
        self._next_id += 1
        self.subscriptions[self._next_id] = subscription
        logger.info(f"[market_ws] Subscribed {subscription} (id={self._next_id})")
        return self._next_id

    async def unsubscribe(self, subscription_id: int) -> None:
        subscription = self.subscriptions.pop(subscription_id, None)
        if subscription is None:
            raise SubscriptionError(
                f"Unknown subscription id {subscription_id}",
                details={"subscription_id": subscription_id},
            )
        await self._send({"method": "unsubscribe", "subscription": subscription})
        logger.info(f"[market_ws] Unsubscribed {subscription} (id={subscription_id})")

    async def next_message(self) -> Optional[WsMsg]:
        if self.ws is None:
            raise SubscriptionError("Feed is not connected")
        if not self.connected and self._queue.empty():
            raise SubscriptionError(f"Feed closed: {self.closed_reason}")
        message = await self._queue.get()
        if message is _CLOSED:
            raise SubscriptionError(f"Feed closed: {self.closed_reason}")
        return message

    async def close(self) -> None:
        self.connected = False
        for task in (self._heartbeat_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._heartbeat_task = None
        self._reader_task = None
        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as e:
                logger.debug(f"[market_ws] Close error ignored: {e}")
        self.subscriptions.clear()
        logger.info("[market_ws] Source closed")

    async def _send(self, message: Any) -> None:
        if not self.connected or self.ws is None:
            raise SubscriptionError(f"Feed closed: {self.closed_reason}", details={"message": message})
        try:
            await self.ws.send(json.dumps(message))
        except ConnectionClosed as e:
            self._mark_closed(f"send failed: {e}")
            raise SubscriptionError(f"Send failed: {e}", details={"message": message}) from e

    def _enqueue(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped_messages += 1
            record_ws_queue_drop()
        self._queue.put_nowait(item)

    def _mark_closed(self, reason: str) -> None:
        if not self.connected:
            return
        self.connected = False
        self.closed_reason = reason
        self._enqueue(_CLOSED)

    async def _reader_loop(self) -> None:
        try:
            async for raw_message in self.ws:
                self._handle_frame(raw_message)
            self._mark_closed("connection closed by server")
        except ConnectionClosed as e:
            self._mark_closed(f"connection closed: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[market_ws] Reader failed: {e}")
            self._mark_closed(f"reader failed: {e}")

    def _handle_frame(self, raw_message: Any) -> None:
        # the server greets with a plain-text line
        if raw_message == "Websocket connection established.":
            return
        try:
            message = json.loads(raw_message)
        except (TypeError, ValueError) as e:
            logger.debug(f"[market_ws] Undecodable frame dropped: {e}")
            return
        if isinstance(message, dict) and message.get("channel") == "pong":
            logger.debug("[market_ws] Pong received")
            return
        self.total_messages += 1
        self.last_message_ts = time.time()
        self._enqueue(message)

    async def _heartbeat_loop(self) -> None:
        while self.connected:
            await asyncio.sleep(self.ping_interval)
            try:
                await self._send({"method": "ping"})
            except SubscriptionError:
                return
            self.pings_sent += 1
            record_ws_ping()
            logger.debug(f"[market_ws] Ping sent (total: {self.pings_sent})")

    def get_health_metrics(self) -> Dict[str, Any]:
        now = time.time()
        return {
            "connected": self.connected,
            "last_message_s_ago": round(now - self.last_message_ts, 1) if self.last_message_ts else None,
            "subscriptions": len(self.subscriptions),
            "total_messages": self.total_messages,
            "dropped_messages": self.dropped_messages,
            "pings_sent": self.pings_sent,
            "queue_depth": self._queue.qsize(),
        }
