# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""
Publisher - signs completion events and sends them to a single relay.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from ..core.events import Keys, NostrEvent
from .pool import RelayPool
from .relay import PublishStatus

logger = logging.getLogger(__name__)


@runtime_checkable
class Publisher(Protocol):
    async def publish(self, event: NostrEvent, relay_url: str) -> PublishStatus:
        """Sign ``event`` and publish it to ``relay_url`` only."""
        ...


class RelayPublisher:
    """Publisher that signs with the notary key and publishes through a RelayPool."""

    def __init__(self, pool: RelayPool, keys: Keys):
        self.pool = pool
        self.keys = keys

    async def publish(self, event: NostrEvent, relay_url: str) -> PublishStatus:
        """
        Sign and publish an event.

        The wait for the relay's OK is unbounded; callers apply a timeout.

        Raises:
            RelayError: If the relay cannot be reached or drops the connection
        """
        relay = await self.pool.ensure_relay(relay_url)
        signed = self.keys.sign_event(event)
        logger.info(f"Publishing event {signed.id[:16]}... (kind {signed.kind}) to {relay.url}")
        return await relay.publish(signed)
