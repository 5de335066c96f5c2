# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Notary service - wires settings into the two lifecycle loops."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .core.attestation import AttestationService, CalendarAttestationService
from .core.chain_tip import ChainTipOracle, EsploraChainTipOracle
from .core.config import NotarySettings
from .core.events import Keys
from .core.store import RecordStore
from .ingestion import IngestionLoop
from .maturation import MaturationLoop
from .network.pool import RelayPool
from .network.publisher import Publisher, RelayPublisher

logger = logging.getLogger(__name__)


class NotaryService:
    """
    The running notary: one record store, one relay pool, two loops.

    Any collaborator can be passed in to replace the default built from
    settings.
    """

    def __init__(
        self,
        settings: NotarySettings,
        *,
        store: RecordStore | None = None,
        pool: RelayPool | None = None,
        attestation: AttestationService | None = None,
        oracle: ChainTipOracle | None = None,
        publisher: Publisher | None = None,
    ):
        self.settings = settings
        self.keys = Keys(settings.secret_key)

        self.store = store or RecordStore(settings.data_path)
        self.pool = pool or RelayPool()
        self.attestation = attestation or CalendarAttestationService(
            stamp_timeout=settings.stamp_timeout_seconds
        )
        self.oracle = oracle or EsploraChainTipOracle(
            settings.esplora_url, timeout=settings.chain_tip_timeout_seconds
        )
        self.publisher = publisher or RelayPublisher(self.pool, self.keys)

        self.ingestion = IngestionLoop(settings, self.store, self.pool, self.attestation)
        self.maturation = MaturationLoop(
            settings, self.store, self.attestation, self.oracle, self.publisher
        )

        self._tasks: list[asyncio.Task] = []

    def get_stats(self) -> dict[str, Any]:
        """Get statistics from every component."""
        return {
            "public_key": self.keys.public_key,
            "ingestion": self.ingestion.get_stats(),
            "maturation": self.maturation.get_stats(),
            "pool": self.pool.get_stats(),
        }

    async def run(self) -> None:
        """Run both loops until cancelled, then release every connection."""
        logger.info(
            f"Notary {self.keys.public_key[:16]}... starting: "
            f"{len(self.settings.relay_urls)} relays, calendar {self.settings.calendar_url}, "
            f"data in {self.store.base_path}"
        )
        self._tasks = [
            asyncio.create_task(self.maturation.run(), name="maturation"),
            asyncio.create_task(self.ingestion.run(), name="ingestion"),
        ]
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.close()

    async def close(self) -> None:
        """Stop the loops and close relay connections and HTTP sessions."""
        self.ingestion.stop()
        self.maturation.stop()

        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        await self.pool.close()
        close_oracle = getattr(self.oracle, "close", None)
        if close_oracle is not None:
            await close_oracle()
        logger.info("Notary stopped")
