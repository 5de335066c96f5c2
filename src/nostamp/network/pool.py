# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""
Relay pool - one connection per relay URL, shared by subscribing and publishing.

subscribe_many() fans a filter out to several relays and merges the results
into a single stream. An event delivered by more than one relay is surfaced
once, tagged with the relay it arrived from first. The stream ends when every
relay subscription has ended (connection lost or CLOSED by the relay).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Set

from ..core.events import NostrEvent
from ..core.exceptions import RelayError
from .relay import RelayConnection, normalize_relay_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayEvent:
    """An event together with the relay it was first seen on."""

    event: NostrEvent
    relay_url: str


class RelayPool:
    """
    Manages relay connections for the notary.

    Handles:
    - Lazy connection establishment and reconnection
    - Multi-relay subscriptions with cross-relay deduplication
    - Connection teardown
    """

    def __init__(
        self,
        connect_timeout: float = 10.0,
        verify_events: bool = True,
        connection_factory: Optional[Callable[..., RelayConnection]] = None,
    ):
        """
        Initialize the pool.

        Args:
            connect_timeout: Bound on each websocket handshake, in seconds
            verify_events: Drop inbound events with a bad id or signature
            connection_factory: Builds a RelayConnection from (url, **options)
        """
        self.connect_timeout = connect_timeout
        self.verify_events = verify_events
        self._connection_factory = connection_factory or RelayConnection

        self.relays: Dict[str, RelayConnection] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._stats: Dict[str, int] = {
            "connections_established": 0,
            "connections_failed": 0,
            "duplicates_suppressed": 0,
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics."""
        return {
            **self._stats,
            "connected_relays": sum(1 for conn in self.relays.values() if not conn.closed),
        }

    async def ensure_relay(self, url: str) -> RelayConnection:
        """
        Return a live connection to ``url``, connecting or reconnecting if needed.

        Raises:
            RelayError: If the URL is invalid or the connection fails
        """
        url = normalize_relay_url(url)
        lock = self._locks.setdefault(url, asyncio.Lock())
        async with lock:
            conn = self.relays.get(url)
            if conn is not None and not conn.closed:
                return conn

            if conn is not None:
                await conn.close()

            conn = self._connection_factory(
                url,
                connect_timeout=self.connect_timeout,
                verify_events=self.verify_events,
            )
            try:
                await conn.connect()
            except RelayError:
                self._stats["connections_failed"] += 1
                self.relays.pop(url, None)
                raise

            self.relays[url] = conn
            self._stats["connections_established"] += 1
            return conn

    async def subscribe_many(
        self,
        urls: Iterable[str],
        filters: List[Dict[str, Any]],
    ) -> AsyncIterator[RelayEvent]:
        """
        Subscribe to every relay and yield each distinct event once.

        Relays that cannot be reached are logged and left out. Close the
        iterator (``aclose()``) to stop early.
        """
        queue: asyncio.Queue = asyncio.Queue()
        seen: Set[str] = set()

        async def pump(url: str) -> None:
            # Exactly one None per relay marks its end
            try:
                try:
                    relay = await self.ensure_relay(url)
                    subscription = await relay.subscribe(filters)
                except RelayError as e:
                    logger.warning(f"Could not subscribe to {url}: {e}")
                    return

                try:
                    async for event in subscription:
                        queue.put_nowait(RelayEvent(event=event, relay_url=relay.url))
                finally:
                    relay.discard_subscription(subscription.sub_id)
            finally:
                queue.put_nowait(None)

        url_list = list(dict.fromkeys(urls))
        tasks = [asyncio.create_task(pump(url)) for url in url_list]
        remaining = len(tasks)

        try:
            while remaining:
                item = await queue.get()
                if item is None:
                    remaining -= 1
                    continue
                if item.event.id in seen:
                    self._stats["duplicates_suppressed"] += 1
                    continue
                seen.add(item.event.id)
                yield item
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Close all connections."""
        for url, conn in list(self.relays.items()):
            try:
                await conn.close()
            except Exception as e:
                logger.warning(f"Error closing relay {url}: {e}")
        self.relays.clear()
