# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Ingestion loop - turns tagged relay events into pending attestation records.

For each distinct event carrying the topic tag:

1. Skip it if a proof already exists for its id (replayed subscription).
2. Write the event and the relay it came from.
3. Submit the event id to the calendar.
4. Write the returned proof, which completes the record.

A failed submission leaves an orphan (event and relay, no proof). Orphans are
resubmitted before every subscription round, so a calendar outage delays a
record instead of losing it.

When every relay subscription has ended, the loop sleeps a fixed interval and
subscribes again, forever.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from .core.attestation import AttestationService
from .core.events import NostrEvent
from .core.exceptions import AttestationError, NostampException
from .core.logging import correlation_context
from .core.proofs import new_proof
from .core.store import ArtifactKind, RecordStore

if TYPE_CHECKING:
    from .core.config import NotarySettings
    from .network.pool import RelayPool

logger = logging.getLogger(__name__)


class IngestionLoop:
    """Subscribes to relays and creates records for new tagged events."""

    def __init__(
        self,
        settings: NotarySettings,
        store: RecordStore,
        pool: RelayPool,
        attestation: AttestationService,
    ):
        self.relay_urls = settings.relay_urls
        self.topic_tag = settings.topic_tag
        self.calendar_url = settings.calendar_url
        self.reconnect_interval = settings.reconnect_interval_seconds
        self.resubmit_orphans = settings.resubmit_orphans

        self.store = store
        self.pool = pool
        self.attestation = attestation

        self._running = False
        self._stats: dict[str, int] = {
            "events_seen": 0,
            "events_off_topic": 0,
            "duplicates_skipped": 0,
            "records_created": 0,
            "stamp_failures": 0,
            "storage_failures": 0,
            "orphans_resubmitted": 0,
            "subscription_rounds": 0,
        }

    @property
    def filters(self) -> list[dict[str, Any]]:
        return [{"#t": [self.topic_tag], "limit": 1}]

    def get_stats(self) -> dict[str, int]:
        """Get ingestion statistics."""
        return dict(self._stats)

    async def run(self) -> None:
        """Subscribe, ingest, and resubscribe until stopped or cancelled."""
        self._running = True
        while self._running:
            try:
                if self.resubmit_orphans:
                    await self.resubmit_orphaned_records()
                await self.receive()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Ingestion round failed: {e}")

            if not self._running:
                break
            logger.warning(
                f"Lost connection to all relays, will start again after "
                f"{self.reconnect_interval:.0f}s"
            )
            await asyncio.sleep(self.reconnect_interval)

    def stop(self) -> None:
        self._running = False

    async def receive(self) -> None:
        """One subscription round; returns once every relay has dropped."""
        self._stats["subscription_rounds"] += 1
        logger.info(f"Subscribing to {len(self.relay_urls)} relays for #t={self.topic_tag}")
        events = self.pool.subscribe_many(self.relay_urls, self.filters)
        try:
            async for relay_event in events:
                await self.handle_event(relay_event.event, relay_event.relay_url)
        finally:
            await events.aclose()

    def _is_on_topic(self, event: NostrEvent) -> bool:
        return any(
            len(tag) >= 2 and tag[0] == "t" and tag[1] == self.topic_tag for tag in event.tags
        )

    async def handle_event(self, event: NostrEvent, relay_url: str) -> bool:
        """
        Create a record for one inbound event.

        Returns:
            True if a complete record (with proof) was created.
        """
        self._stats["events_seen"] += 1
        with correlation_context(event.id):
            if not self._is_on_topic(event):
                self._stats["events_off_topic"] += 1
                logger.debug(f"Ignoring event {event.id[:16]}... without #t={self.topic_tag}")
                return False

            if self.store.has(event.id, ArtifactKind.PROOF):
                self._stats["duplicates_skipped"] += 1
                logger.debug(f"Stamp file already exists for {event.id[:16]}...")
                return False

            logger.info(f"Stamping event {event.id[:16]}... from {relay_url}")
            try:
                self.store.save_origin(event, relay_url)
            except NostampException as e:
                self._stats["storage_failures"] += 1
                logger.warning(f"Failed to save event {event.id[:16]}...: {e}")
                return False

            return await self._stamp(event.id)

    async def _stamp(self, record_id: str) -> bool:
        digest = bytes.fromhex(record_id)
        try:
            timestamp = await self.attestation.stamp(self.calendar_url, digest)
        except AttestationError as e:
            self._stats["stamp_failures"] += 1
            logger.warning(f"Failed to stamp {record_id[:16]}...: {e}")
            return False

        try:
            self.store.save_proof(record_id, new_proof(digest, timestamp))
        except NostampException as e:
            self._stats["storage_failures"] += 1
            logger.warning(f"Failed to save stamp file for {record_id[:16]}...: {e}")
            return False

        self._stats["records_created"] += 1
        logger.info(f"Saved stamp file for {record_id[:16]}...")
        return True

    async def resubmit_orphaned_records(self) -> int:
        """
        Retry calendar submission for records that have no proof yet.

        Returns:
            Number of orphans that now have a proof.
        """
        resubmitted = 0
        for record_id in list(self.store.scan_orphans()):
            with correlation_context(record_id):
                try:
                    self.store.load_message(record_id)
                except NostampException as e:
                    logger.warning(f"Skipping orphan {record_id[:16]}...: {e}")
                    continue

                logger.info(f"Resubmitting orphaned record {record_id[:16]}...")
                if await self._stamp(record_id):
                    resubmitted += 1

        self._stats["orphans_resubmitted"] += resubmitted
        return resubmitted
