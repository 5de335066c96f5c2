# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""OpenTimestamps proof helpers.

A proof is a ``DetachedTimestampFile`` whose timestamp tree is rooted at the
event digest. Every leaf attestation in the tree defines one attestation
sequence: the chain of operations from the digest down to that attestation.
A sequence is *pending* while it ends in a calendar ``PendingAttestation``
and *complete* once it ends in a ``BitcoinBlockHeaderAttestation``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from opentimestamps.core.notary import (
    BitcoinBlockHeaderAttestation,
    PendingAttestation,
    TimeAttestation,
)
from opentimestamps.core.op import Op, OpSHA256
from opentimestamps.core.serialize import (
    BytesDeserializationContext,
    BytesSerializationContext,
    DeserializationError,
)
from opentimestamps.core.timestamp import DetachedTimestampFile, Timestamp

from .exceptions import RecordFormatError

DIGEST_LENGTH = 32


@dataclass(frozen=True)
class AttestationSequence:
    """One path through a timestamp tree, from the digest to an attestation."""

    ops: tuple[Op, ...]
    commitment: bytes
    attestation: TimeAttestation

    @property
    def is_complete(self) -> bool:
        return isinstance(self.attestation, BitcoinBlockHeaderAttestation)

    @property
    def is_pending(self) -> bool:
        return isinstance(self.attestation, PendingAttestation)

    @property
    def block_height(self) -> int | None:
        if self.is_complete:
            return self.attestation.height
        return None

    @property
    def calendar_url(self) -> str | None:
        if self.is_pending:
            return self.attestation.uri
        return None

    def to_timestamp(self, digest: bytes) -> Timestamp:
        """Rebuild this sequence as a standalone timestamp rooted at ``digest``."""
        root = Timestamp(digest)
        leaf = root
        for op in self.ops:
            leaf = leaf.ops.add(op)
        if leaf.msg != self.commitment:
            raise RecordFormatError(
                "Sequence does not lead from the digest to its commitment",
                field="digest",
                value=digest.hex(),
            )
        leaf.attestations.add(self.attestation)
        return root

    def leaf_of(self, root: Timestamp) -> Timestamp:
        """The node of ``root`` at the end of this sequence's operations."""
        leaf = root
        for op in self.ops:
            leaf = leaf.ops.add(op)
        return leaf


def _attestation_key(attestation: TimeAttestation):
    return (attestation.TAG, repr(attestation))


def _op_key(item):
    op = item[0]
    return (op.TAG, repr(op))


def _walk(stamp: Timestamp, path: tuple[Op, ...]) -> Iterator[AttestationSequence]:
    for attestation in sorted(stamp.attestations, key=_attestation_key):
        yield AttestationSequence(ops=path, commitment=stamp.msg, attestation=attestation)
    for op, sub_stamp in sorted(stamp.ops.items(), key=_op_key):
        yield from _walk(sub_stamp, path + (op,))


def sequences(timestamp: Timestamp) -> list[AttestationSequence]:
    """All attestation sequences of a timestamp tree, in a stable order."""
    return list(_walk(timestamp, ()))


def is_complete(timestamp: Timestamp) -> bool:
    """Whether any sequence of the tree ends in a Bitcoin block attestation."""
    return any(
        isinstance(attestation, BitcoinBlockHeaderAttestation)
        for _, attestation in timestamp.all_attestations()
    )


def complete_only(digest: bytes, timestamp: Timestamp) -> Timestamp:
    """Copy of the tree keeping only sequences that end in a block attestation."""
    return timestamp_from_sequences(digest, [s for s in sequences(timestamp) if s.is_complete])


def timestamp_from_sequences(digest: bytes, seqs: Iterable[AttestationSequence]) -> Timestamp:
    root = Timestamp(digest)
    for seq in seqs:
        root.merge(seq.to_timestamp(digest))
    return root


def new_proof(digest: bytes, timestamp: Timestamp | None = None) -> DetachedTimestampFile:
    """Wrap a timestamp over ``digest`` into a detached proof file."""
    if len(digest) != DIGEST_LENGTH:
        raise RecordFormatError(
            f"Digest must be {DIGEST_LENGTH} bytes", field="digest", value=digest.hex()
        )
    return DetachedTimestampFile(OpSHA256(), timestamp if timestamp is not None else Timestamp(digest))


def serialize_proof(proof: DetachedTimestampFile) -> bytes:
    ctx = BytesSerializationContext()
    try:
        proof.serialize(ctx)
    except ValueError as e:
        raise RecordFormatError(f"Proof cannot be serialized: {e}", field="proof") from e
    return ctx.getbytes()


def parse_proof(data: bytes, expected_digest: bytes | None = None) -> DetachedTimestampFile:
    """Deserialize a proof file.

    Args:
        data: Serialized ``.ots`` bytes
        expected_digest: When given, the proof must cover exactly this digest

    Raises:
        RecordFormatError: If the bytes are not a valid proof for the digest.
    """
    try:
        proof = DetachedTimestampFile.deserialize(BytesDeserializationContext(data))
    except (DeserializationError, ValueError) as e:
        raise RecordFormatError(f"Malformed proof: {e}", field="proof") from e

    if expected_digest is not None and proof.file_digest != expected_digest:
        raise RecordFormatError(
            "Proof covers a different digest",
            field="digest",
            value=proof.file_digest.hex(),
        )
    return proof
