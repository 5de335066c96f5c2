"""Global test fixtures for the Nostamp test suite."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable

import pytest
from opentimestamps.core.notary import BitcoinBlockHeaderAttestation, PendingAttestation
from opentimestamps.core.op import OpAppend, OpSHA256
from opentimestamps.core.timestamp import Timestamp

from nostamp.core.chain_tip import ChainTip
from nostamp.core.config import NotarySettings
from nostamp.core.events import Keys, NostrEvent
from nostamp.core.exceptions import AttestationError
from nostamp.core.proofs import AttestationSequence, new_proof, sequences
from nostamp.core.store import RecordStore
from nostamp.network.pool import RelayEvent
from nostamp.network.relay import PublishStatus

NOTARY_SECRET = "01" * 32
AUTHOR_SECRET = "02" * 32

CALENDAR_A = "https://a.calendar.example"
CALENDAR_B = "https://b.calendar.example"
RELAY_A = "wss://relay-a.example"
RELAY_B = "wss://relay-b.example"

BLOCK_HEIGHT = 840000
TIP = ChainTip(height=840123, hash="00000000000000000001" + "ab" * 22)


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove notary environment variables and run away from any .env file."""
    bare_vars = ("SECRET_KEY", "CALENDAR", "ESPLORA")
    for key in list(os.environ.keys()):
        if key.startswith("NOSTAMP_") or key in bare_vars:
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def env_with_secret(monkeypatch, clean_env):
    """Set the one required variable."""
    monkeypatch.setenv("SECRET_KEY", NOTARY_SECRET)


@pytest.fixture
def settings(clean_env, tmp_path) -> NotarySettings:
    """Settings tuned for fast tests (no sleeps, short timeouts)."""
    return NotarySettings(
        secret_key=NOTARY_SECRET,
        calendar_url=CALENDAR_A,
        relays=f"{RELAY_A},{RELAY_B}",
        data_dir=str(tmp_path / "data"),
        maturation_warmup_seconds=0,
        maturation_interval_seconds=0.01,
        reconnect_interval_seconds=0,
        upgrade_timeout_seconds=0.2,
        publish_timeout_seconds=0.2,
        chain_tip_timeout_seconds=0.2,
    )


@pytest.fixture
def store(tmp_path) -> RecordStore:
    return RecordStore(tmp_path / "data")


# ============================================================================
# Event Fixtures
# ============================================================================


@pytest.fixture
def notary_keys() -> Keys:
    return Keys(NOTARY_SECRET)


@pytest.fixture
def author_keys() -> Keys:
    return Keys(AUTHOR_SECRET)


def make_event(
    keys: Keys,
    content: str = "BTC above 100k by new year",
    tags: list[list[str]] | None = None,
    created_at: int = 1700000000,
    kind: int = 1,
) -> NostrEvent:
    """A signed event, tagged with the default topic unless tags are given."""
    unsigned = NostrEvent(
        pubkey="",
        created_at=created_at,
        kind=kind,
        tags=tags if tags is not None else [["t", "prediction"]],
        content=content,
    )
    return keys.sign_event(unsigned)


@pytest.fixture
def event(author_keys) -> NostrEvent:
    return make_event(author_keys)


# ============================================================================
# Proof Builders
# ============================================================================


def pending_timestamp(
    digest: bytes, calendar_url: str = CALENDAR_A, nonce: bytes = b"\x01" * 16
) -> Timestamp:
    """Timestamp over digest with one calendar-pending sequence."""
    root = Timestamp(digest)
    leaf = root.ops.add(OpAppend(nonce)).ops.add(OpSHA256())
    leaf.attestations.add(PendingAttestation(calendar_url))
    return root


def confirm(sequence: AttestationSequence, digest: bytes, height: int = BLOCK_HEIGHT) -> Timestamp:
    """What a calendar returns once the sequence's commitment is in a block."""
    root = sequence.to_timestamp(digest)
    leaf = sequence.leaf_of(root)
    leaf.ops.add(OpAppend(b"\x09" * 8)).ops.add(OpSHA256()).attestations.add(
        BitcoinBlockHeaderAttestation(height)
    )
    return root


def progress(sequence: AttestationSequence, digest: bytes) -> Timestamp:
    """An upgrade that moves closer to a block without reaching one."""
    root = sequence.to_timestamp(digest)
    leaf = sequence.leaf_of(root)
    leaf.ops.add(OpAppend(b"\x07")).attestations.add(PendingAttestation(sequence.calendar_url))
    return root


def store_record(
    store: RecordStore,
    event: NostrEvent,
    relay_url: str = RELAY_A,
    calendars: Iterable[str] = (CALENDAR_A,),
    confirmed: bool = False,
) -> None:
    """Write a complete record, pending at each calendar (or already confirmed)."""
    store.save_origin(event, relay_url)
    timestamp = Timestamp(event.digest)
    for i, calendar_url in enumerate(calendars):
        timestamp.merge(pending_timestamp(event.digest, calendar_url, nonce=bytes([i + 1]) * 16))
    if confirmed:
        timestamp.merge(confirm(sequences(timestamp)[0], event.digest))
    store.save_proof(event.id, new_proof(event.digest, timestamp))


# ============================================================================
# Service Fakes
# ============================================================================


class FakeAttestationService:
    """Deterministic calendar.

    ``upgrades`` maps a calendar URL to "confirm", "progress", "hang", or an
    exception instance. Calendars not listed report the commitment as unknown.
    """

    def __init__(self):
        self.stamp_calls: list[tuple[str, bytes]] = []
        self.upgrade_calls: list[str] = []
        self.stamp_error: Exception | None = None
        self.upgrades: dict[str, object] = {}

    async def stamp(self, calendar_url: str, digest: bytes) -> Timestamp:
        self.stamp_calls.append((calendar_url, digest))
        if self.stamp_error is not None:
            raise self.stamp_error
        return pending_timestamp(digest, calendar_url)

    async def upgrade(
        self, sequence: AttestationSequence, digest: bytes, timeout: float
    ) -> Timestamp:
        self.upgrade_calls.append(sequence.calendar_url)
        behaviour = self.upgrades.get(sequence.calendar_url)
        if behaviour is None:
            raise AttestationError("Commitment not found", calendar_url=sequence.calendar_url)
        if isinstance(behaviour, Exception):
            raise behaviour
        if behaviour == "hang":
            await asyncio.sleep(3600)
        if behaviour == "progress":
            return progress(sequence, digest)
        return confirm(sequence, digest)


class FakeChainTipOracle:
    def __init__(self, tip: ChainTip = TIP):
        self.tip = tip
        self.error: Exception | None = None
        self.hang = False
        self.calls = 0

    async def get_tip(self) -> ChainTip:
        self.calls += 1
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        return self.tip


class FakePublisher:
    def __init__(self, keys: Keys):
        self.keys = keys
        self.status = PublishStatus.SUCCEEDED
        self.error: Exception | None = None
        self.hang = False
        self.published: list[tuple[NostrEvent, str]] = []

    async def publish(self, event: NostrEvent, relay_url: str) -> PublishStatus:
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        self.published.append((self.keys.sign_event(event), relay_url))
        return self.status


class FakePool:
    """Pool replaying a fixed list of relay events per subscription round."""

    def __init__(self, rounds: list[list[RelayEvent]] | None = None):
        self.rounds = rounds or []
        self.calls: list[tuple[list[str], list[dict]]] = []
        self.closed = False

    async def subscribe_many(self, urls, filters):
        self.calls.append((list(urls), filters))
        index = len(self.calls) - 1
        for item in self.rounds[index] if index < len(self.rounds) else []:
            yield item

    def get_stats(self) -> dict:
        return {"connected_relays": 0}

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_attestation() -> FakeAttestationService:
    return FakeAttestationService()


@pytest.fixture
def fake_oracle() -> FakeChainTipOracle:
    return FakeChainTipOracle()


@pytest.fixture
def fake_publisher(notary_keys) -> FakePublisher:
    return FakePublisher(notary_keys)

