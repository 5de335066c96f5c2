# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Maturation loop - upgrades pending proofs and publishes confirmed ones.

Every cycle:

1. Fetch the chain tip once. Without it nothing can be published, so a
   failure aborts the cycle and every record waits for the next one.
2. For each record with a proof, pick the sequence to act on:
   - a sequence that is already complete is published as is, without
     contacting the calendar (this is how a failed publish is retried);
   - otherwise each pending sequence is upgraded in turn until one upgrade
     succeeds. Failed or timed-out upgrades move on to the next sequence.
3. An upgraded proof is written back to the store before anything else.
   If it is now complete, the completion event is published to the relay the
   event came from, and the record is deleted once the relay accepts it.

A record whose publish fails keeps its (complete) proof and is retried next
cycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from opentimestamps.core.timestamp import Timestamp

from .core.attestation import AttestationService
from .core.chain_tip import ChainTip, ChainTipOracle
from .core.events import completion_event
from .core.exceptions import ChainTipError, NostampException
from .core.logging import correlation_context
from .core.proofs import (
    AttestationSequence,
    complete_only,
    is_complete,
    new_proof,
    sequences,
    serialize_proof,
)
from .core.store import PendingAttestation, RecordStore
from .network.publisher import Publisher
from .network.relay import PublishStatus

if TYPE_CHECKING:
    from .core.config import NotarySettings

logger = logging.getLogger(__name__)


class RecordOutcome(Enum):
    """What a cycle did with one record."""

    SKIPPED = "skipped"
    UNCHANGED = "unchanged"
    STILL_PENDING = "still_pending"
    PUBLISH_FAILED = "publish_failed"
    STORAGE_FAILED = "storage_failed"
    RETIRED = "retired"


@dataclass
class CycleReport:
    """Summary of one maturation cycle."""

    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    aborted: bool = False
    chain_tip: ChainTip | None = None
    scanned: int = 0
    skipped: int = 0
    upgraded: int = 0
    upgrade_failures: int = 0
    still_pending: int = 0
    published: int = 0
    publish_failures: int = 0
    retired: int = 0

    def record(self, outcome: RecordOutcome) -> None:
        if outcome is RecordOutcome.SKIPPED:
            self.skipped += 1
        elif outcome is RecordOutcome.STILL_PENDING:
            self.still_pending += 1
        elif outcome is RecordOutcome.PUBLISH_FAILED:
            self.publish_failures += 1
        elif outcome is RecordOutcome.RETIRED:
            self.retired += 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MaturationLoop:
    """Periodically drives every stored record towards publication."""

    def __init__(
        self,
        settings: NotarySettings,
        store: RecordStore,
        attestation: AttestationService,
        oracle: ChainTipOracle,
        publisher: Publisher,
    ):
        self.interval = settings.maturation_interval_seconds
        self.warmup = settings.maturation_warmup_seconds
        self.upgrade_timeout = settings.upgrade_timeout_seconds
        self.publish_timeout = settings.publish_timeout_seconds
        self.chain_tip_timeout = settings.chain_tip_timeout_seconds

        self.store = store
        self.attestation = attestation
        self.oracle = oracle
        self.publisher = publisher

        self._running = False
        self.last_report: CycleReport | None = None
        self._stats: dict[str, int] = {
            "cycles": 0,
            "cycles_aborted": 0,
            "published": 0,
            "retired": 0,
        }

    def get_stats(self) -> dict[str, Any]:
        """Get maturation statistics."""
        return {
            **self._stats,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }

    async def run(self) -> None:
        """Warm up, then run a cycle every interval until stopped or cancelled."""
        self._running = True
        await asyncio.sleep(self.warmup)
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Maturation cycle failed: {e}")

            if not self._running:
                break
            await asyncio.sleep(self.interval)

    def stop(self) -> None:
        self._running = False

    async def run_cycle(self) -> CycleReport:
        """Process every record in the store once."""
        report = CycleReport()
        with correlation_context():
            logger.info("Trying to publish events for finalized timestamps")
            try:
                tip = await asyncio.wait_for(self.oracle.get_tip(), timeout=self.chain_tip_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Chain tip lookup timed out after {self.chain_tip_timeout}s")
                return self._finish(report, aborted=True)
            except ChainTipError as e:
                logger.warning(f"Failed to get chain tip: {e}")
                return self._finish(report, aborted=True)

            report.chain_tip = tip
            logger.info(f"Chain tip is block {tip.height} ({tip.hash[:16]}...)")

            try:
                record_ids = list(self.store.scan())
            except NostampException as e:
                logger.warning(f"Failed to scan {self.store.base_path}: {e}")
                return self._finish(report, aborted=True)

            for record_id in record_ids:
                report.scanned += 1
                with correlation_context(record_id):
                    outcome = await self.process_record(record_id, tip, report)
                report.record(outcome)

        return self._finish(report)

    def _finish(self, report: CycleReport, aborted: bool = False) -> CycleReport:
        report.aborted = aborted
        report.finished_at = time.time()
        self.last_report = report
        self._stats["cycles"] += 1
        if aborted:
            self._stats["cycles_aborted"] += 1
        else:
            logger.info(
                f"Cycle done: {report.scanned} scanned, {report.upgraded} upgraded, "
                f"{report.published} published, {report.retired} retired"
            )
        return report

    async def process_record(
        self, record_id: str, tip: ChainTip, report: CycleReport
    ) -> RecordOutcome:
        """Upgrade and, if confirmed, publish one record."""
        try:
            record = self.store.load(record_id)
        except NostampException as e:
            logger.warning(f"Skipping record {record_id[:16]}...: {e}")
            return RecordOutcome.SKIPPED

        seqs = sequences(record.proof.timestamp)
        if any(seq.is_complete for seq in seqs):
            logger.info(f"Record {record.id[:16]}... already confirmed, publishing")
            return await self._publish(
                record, complete_only(record.digest, record.proof.timestamp), tip, report
            )

        for seq in seqs:
            if not seq.is_pending:
                continue

            upgraded = await self._upgrade(record, seq, report)
            if upgraded is None:
                continue

            report.upgraded += 1
            try:
                record.proof.timestamp.merge(upgraded)
                self.store.save_proof(record.id, record.proof)
            except (NostampException, ValueError) as e:
                logger.warning(f"Failed to save upgraded proof for {record.id[:16]}...: {e}")
                return RecordOutcome.STORAGE_FAILED

            if not is_complete(upgraded):
                logger.info(f"Proof for {record.id[:16]}... upgraded, still waiting for a block")
                return RecordOutcome.STILL_PENDING

            return await self._publish(record, complete_only(record.digest, upgraded), tip, report)

        return RecordOutcome.UNCHANGED

    async def _upgrade(
        self, record: PendingAttestation, seq: AttestationSequence, report: CycleReport
    ) -> Timestamp | None:
        try:
            return await asyncio.wait_for(
                self.attestation.upgrade(seq, record.digest, self.upgrade_timeout),
                timeout=self.upgrade_timeout,
            )
        except asyncio.TimeoutError:
            report.upgrade_failures += 1
            logger.info(
                f"Upgrade of {record.id[:16]}... against {seq.calendar_url} timed out "
                f"after {self.upgrade_timeout}s"
            )
        except NostampException as e:
            report.upgrade_failures += 1
            logger.info(f"Upgrade of {record.id[:16]}... not available yet: {e}")
        return None

    async def _publish(
        self,
        record: PendingAttestation,
        confirmed: Timestamp,
        tip: ChainTip,
        report: CycleReport,
    ) -> RecordOutcome:
        try:
            proof_bytes = serialize_proof(new_proof(record.digest, confirmed))
        except NostampException as e:
            logger.warning(f"Failed to serialize proof for {record.id[:16]}...: {e}")
            return RecordOutcome.PUBLISH_FAILED

        event = completion_event(record.message, record.endpoint, proof_bytes, tip.height, tip.hash)
        try:
            status = await asyncio.wait_for(
                self.publisher.publish(event, record.endpoint),
                timeout=self.publish_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Publishing to {record.endpoint} timed out after {self.publish_timeout}s"
            )
            return RecordOutcome.PUBLISH_FAILED
        except NostampException as e:
            logger.warning(f"Failed to publish to {record.endpoint}: {e}")
            return RecordOutcome.PUBLISH_FAILED

        if status is not PublishStatus.SUCCEEDED:
            logger.warning(f"Relay {record.endpoint} did not accept the event ({status.value})")
            return RecordOutcome.PUBLISH_FAILED

        report.published += 1
        self._stats["published"] += 1
        logger.info(f"Published attestation for {record.id[:16]}... to {record.endpoint}")

        if not self.store.delete(record.id):
            logger.warning(f"Record {record.id[:16]}... only partially deleted")
        self._stats["retired"] += 1
        return RecordOutcome.RETIRED
