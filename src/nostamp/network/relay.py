# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""
Relay connection - one NIP-01 websocket to one relay.

A connection runs a single reader task that dispatches relay frames:
- EVENT  → the matching subscription queue
- EOSE   → marks the subscription's stored events as drained
- OK     → resolves the pending publish for that event id
- CLOSED → ends the matching subscription
- NOTICE → logged

When the socket closes, every subscription ends and every pending publish
fails, so callers never wait on a dead relay.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp
from aiohttp import WSMsgType

from ..core.events import NostrEvent
from ..core.exceptions import RecordFormatError, RelayError

logger = logging.getLogger(__name__)


class PublishStatus(Enum):
    """Outcome of publishing one event to one relay."""

    SENT = "sent"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def normalize_relay_url(url: str) -> str:
    """Trim whitespace and trailing slashes; require a websocket scheme."""
    url = url.strip().rstrip("/")
    if not url.startswith(("ws://", "wss://")):
        raise RelayError(f"Not a websocket URL: {url!r}", relay_url=url)
    return url


class Subscription:
    """Stream of events for one REQ on one relay."""

    def __init__(self, sub_id: str, relay_url: str):
        self.sub_id = sub_id
        self.relay_url = relay_url
        self.eose = asyncio.Event()
        self.closed_reason: Optional[str] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def push(self, event: NostrEvent) -> None:
        if not self._ended:
            self._queue.put_nowait(event)

    def end(self, reason: Optional[str] = None) -> None:
        if self._ended:
            return
        self._ended = True
        self.closed_reason = reason
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[NostrEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class RelayConnection:
    """
    A websocket connection to a Nostr relay.

    Used for both subscribing and publishing; the pool keeps one per URL.
    """

    def __init__(
        self,
        url: str,
        session: Optional[aiohttp.ClientSession] = None,
        connect_timeout: float = 10.0,
        heartbeat: float = 30.0,
        verify_events: bool = True,
    ):
        """
        Initialize the connection (call connect() before use).

        Args:
            url: Relay websocket URL
            session: Client session to use (a private one is created otherwise)
            connect_timeout: Bound on the websocket handshake, in seconds
            heartbeat: Websocket ping interval, in seconds
            verify_events: Drop inbound events whose id or signature is invalid
        """
        self.url = normalize_relay_url(url)
        self.connect_timeout = connect_timeout
        self.heartbeat = heartbeat
        self.verify_events = verify_events

        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None

        self.subscriptions: Dict[str, Subscription] = {}
        self._pending_ok: Dict[str, asyncio.Future] = {}

        self.connected_at: Optional[float] = None
        self.last_seen: Optional[float] = None
        self._stats: Dict[str, int] = {
            "events_received": 0,
            "events_rejected": 0,
            "published": 0,
            "publish_failures": 0,
        }

    @property
    def closed(self) -> bool:
        return self._ws is None or self._ws.closed

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        return {
            **self._stats,
            "url": self.url,
            "connected": not self.closed,
            "active_subscriptions": len(self.subscriptions),
        }

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the websocket and start the reader task.

        Raises:
            RelayError: If the handshake fails or times out
        """
        if not self.closed:
            return

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self.url, heartbeat=self.heartbeat),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            await self._close_session()
            raise RelayError("Connection timeout", relay_url=self.url) from e
        except (aiohttp.ClientError, OSError) as e:
            await self._close_session()
            raise RelayError(f"Failed to connect: {e}", relay_url=self.url) from e

        self.connected_at = time.time()
        self.last_seen = self.connected_at
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"Connected to relay {self.url}")

    async def close(self) -> None:
        """Close the websocket, ending subscriptions and pending publishes."""
        if self._ws is not None and not self._ws.closed:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Error closing websocket to {self.url}: {e}")

        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None

        self._teardown("connection closed")
        await self._close_session()

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    # -------------------------------------------------------------------------
    # SUBSCRIBE / PUBLISH
    # -------------------------------------------------------------------------

    async def subscribe(
        self, filters: List[Dict[str, Any]], sub_id: Optional[str] = None
    ) -> Subscription:
        """
        Send a REQ and return the subscription receiving its events.

        Raises:
            RelayError: If the relay is not connected or the send fails
        """
        if self.closed:
            raise RelayError("Relay not connected", relay_url=self.url)

        sub_id = sub_id or secrets.token_hex(8)
        subscription = Subscription(sub_id, self.url)
        self.subscriptions[sub_id] = subscription
        try:
            await self._ws.send_json(["REQ", sub_id, *filters])
        except Exception as e:
            self.subscriptions.pop(sub_id, None)
            raise RelayError(f"Failed to subscribe: {e}", relay_url=self.url) from e
        return subscription

    def discard_subscription(self, sub_id: str) -> None:
        """Forget a subscription locally without telling the relay."""
        subscription = self.subscriptions.pop(sub_id, None)
        if subscription is not None:
            subscription.end("discarded")

    async def unsubscribe(self, sub_id: str) -> None:
        """Send CLOSE for a subscription and end it."""
        self.discard_subscription(sub_id)
        if not self.closed:
            try:
                await self._ws.send_json(["CLOSE", sub_id])
            except Exception as e:
                logger.debug(f"Failed to send CLOSE to {self.url}: {e}")

    async def publish(self, event: NostrEvent) -> PublishStatus:
        """
        Send an EVENT and wait for the relay's OK.

        The wait is unbounded; callers apply their own timeout.

        Returns:
            SUCCEEDED if the relay accepted the event, FAILED otherwise

        Raises:
            RelayError: If the relay is not connected, the send fails, or the
                connection drops before an OK arrives
        """
        if self.closed:
            raise RelayError("Relay not connected", relay_url=self.url)

        future = asyncio.get_running_loop().create_future()
        self._pending_ok[event.id] = future
        try:
            try:
                await self._ws.send_json(["EVENT", event.to_dict()])
            except Exception as e:
                raise RelayError(f"Failed to send event: {e}", relay_url=self.url) from e
            accepted, message = await future
        finally:
            self._pending_ok.pop(event.id, None)

        if accepted:
            self._stats["published"] += 1
            return PublishStatus.SUCCEEDED

        self._stats["publish_failures"] += 1
        logger.warning(f"Relay {self.url} rejected event {event.id[:16]}...: {message}")
        return PublishStatus.FAILED

    # -------------------------------------------------------------------------
    # READER
    # -------------------------------------------------------------------------

    async def _read_loop(self) -> None:
        """Receive frames until the socket closes."""
        try:
            async for msg in self._ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        continue
                    self.last_seen = time.time()
                    self._dispatch(data)

                elif msg.type in (WSMsgType.ERROR, WSMsgType.CLOSE, WSMsgType.CLOSED):
                    break

        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Receive loop error for relay {self.url}: {e}")

        finally:
            self._teardown("connection lost")

    def _dispatch(self, data: Any) -> None:
        """Route one decoded relay frame."""
        if not isinstance(data, list) or not data or not isinstance(data[0], str):
            return

        frame = data[0]
        if frame == "EVENT" and len(data) >= 3:
            self._handle_event(data[1], data[2])
        elif frame == "EOSE" and len(data) >= 2:
            subscription = self.subscriptions.get(data[1])
            if subscription is not None:
                subscription.eose.set()
        elif frame == "OK" and len(data) >= 3:
            message = data[3] if len(data) >= 4 else ""
            future = self._pending_ok.get(data[1])
            if future is not None and not future.done():
                future.set_result((data[2] is True, message))
        elif frame == "CLOSED" and len(data) >= 2:
            reason = data[2] if len(data) >= 3 else ""
            subscription = self.subscriptions.pop(data[1], None)
            if subscription is not None:
                logger.info(f"Relay {self.url} closed subscription {data[1]}: {reason}")
                subscription.end(reason)
        elif frame == "NOTICE" and len(data) >= 2:
            logger.info(f"Notice from {self.url}: {data[1]}")

    def _handle_event(self, sub_id: Any, payload: Any) -> None:
        subscription = self.subscriptions.get(sub_id)
        if subscription is None:
            return

        try:
            event = NostrEvent.from_dict(payload)
        except RecordFormatError as e:
            self._stats["events_rejected"] += 1
            logger.debug(f"Dropping malformed event from {self.url}: {e}")
            return

        if self.verify_events and not event.is_valid():
            self._stats["events_rejected"] += 1
            logger.debug(f"Dropping event {event.id[:16]}... from {self.url}: bad id or signature")
            return

        self._stats["events_received"] += 1
        subscription.push(event)

    def _teardown(self, reason: str) -> None:
        for subscription in list(self.subscriptions.values()):
            subscription.end(reason)
        self.subscriptions.clear()

        for event_id, future in list(self._pending_ok.items()):
            if not future.done():
                future.set_exception(RelayError(f"Relay {reason} before OK", relay_url=self.url))
        self._pending_ok.clear()
