# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Nostr event model, NIP-01 ids, and BIP-340 signing.

An event id is the SHA-256 of the canonical serialization
``[0, pubkey, created_at, kind, tags, content]``; that id doubles as the
32-byte digest the notary commits to the calendar.
"""

from __future__ import annotations

import base64
import hashlib
import json
import time
from dataclasses import dataclass, field, replace
from typing import Any

from coincurve import PrivateKey, PublicKeyXOnly

from .exceptions import RecordFormatError

# NIP-03 OpenTimestamps attestation event
KIND_OTS_ATTESTATION = 1040

HEX_DIGITS = frozenset("0123456789abcdef")


def is_hex(value: object, length: int) -> bool:
    """Check that value is a lowercase/uppercase hex string of the given length."""
    if not isinstance(value, str) or len(value) != length:
        return False
    return all(c in HEX_DIGITS for c in value.lower())


@dataclass(frozen=True)
class NostrEvent:
    """A Nostr event as exchanged with relays."""

    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]] = field(default_factory=list)
    content: str = ""
    id: str = ""
    sig: str = ""

    def serialize_for_id(self) -> bytes:
        """Canonical NIP-01 serialization hashed into the event id."""
        return json.dumps(
            [0, self.pubkey, self.created_at, self.kind, self.tags, self.content],
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

    def compute_id(self) -> str:
        return hashlib.sha256(self.serialize_for_id()).hexdigest()

    def check_id(self) -> bool:
        """Whether the declared id matches the event content."""
        return bool(self.id) and self.id.lower() == self.compute_id()

    def verify_signature(self) -> bool:
        """Verify the BIP-340 signature of the id against the author pubkey."""
        if not (is_hex(self.id, 64) and is_hex(self.pubkey, 64) and is_hex(self.sig, 128)):
            return False
        try:
            return PublicKeyXOnly(bytes.fromhex(self.pubkey)).verify(
                bytes.fromhex(self.sig), bytes.fromhex(self.id)
            )
        except ValueError:
            return False

    def is_valid(self) -> bool:
        return self.check_id() and self.verify_signature()

    @property
    def digest(self) -> bytes:
        """The 32-byte digest committed to the calendar."""
        return bytes.fromhex(self.id)

    def get_tag_value(self, key: str) -> str | None:
        """First value of the first tag named ``key``."""
        for tag in self.tags:
            if len(tag) >= 2 and tag[0] == key:
                return tag[1]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> NostrEvent:
        """Build an event from its wire form.

        Raises:
            RecordFormatError: If a field is missing or has the wrong shape.
        """
        if not isinstance(data, dict):
            raise RecordFormatError("Event must be a JSON object", field="event")

        event_id = data.get("id")
        if not is_hex(event_id, 64):
            raise RecordFormatError("Event id must be 64 hex characters", field="id", value=event_id)
        pubkey = data.get("pubkey")
        if not is_hex(pubkey, 64):
            raise RecordFormatError("Event pubkey must be 64 hex characters", field="pubkey", value=pubkey)

        created_at = data.get("created_at")
        kind = data.get("kind")
        if not isinstance(created_at, int) or isinstance(created_at, bool):
            raise RecordFormatError("Event created_at must be an integer", field="created_at", value=created_at)
        if not isinstance(kind, int) or isinstance(kind, bool):
            raise RecordFormatError("Event kind must be an integer", field="kind", value=kind)

        tags = data.get("tags", [])
        if not isinstance(tags, list) or not all(
            isinstance(tag, list) and all(isinstance(item, str) for item in tag) for tag in tags
        ):
            raise RecordFormatError("Event tags must be a list of string lists", field="tags")

        content = data.get("content", "")
        sig = data.get("sig", "")
        if not isinstance(content, str) or not isinstance(sig, str):
            raise RecordFormatError("Event content and sig must be strings", field="content")

        return cls(
            id=event_id.lower(),
            pubkey=pubkey.lower(),
            created_at=created_at,
            kind=kind,
            tags=[list(tag) for tag in tags],
            content=content,
            sig=sig.lower(),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> NostrEvent:
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise RecordFormatError(f"Event is not valid JSON: {e}", field="event") from e
        return cls.from_dict(data)


class Keys:
    """secp256k1 key pair used to sign outgoing events."""

    def __init__(self, secret_key_hex: str):
        try:
            secret = bytes.fromhex(secret_key_hex)
        except ValueError as e:
            raise ValueError("secret key must be hex encoded") from e
        if len(secret) != 32:
            raise ValueError("secret key must be 32 bytes")
        self._private_key = PrivateKey(secret)
        # x-only key: drop the parity byte of the compressed encoding
        self.public_key = self._private_key.public_key.format(compressed=True)[1:].hex()

    def sign(self, message: bytes) -> bytes:
        """BIP-340 Schnorr signature over a 32-byte message."""
        return self._private_key.sign_schnorr(message)

    def sign_event(self, event: NostrEvent) -> NostrEvent:
        """Return a copy of the event authored, identified, and signed by this key."""
        unsigned = replace(event, pubkey=self.public_key, id="", sig="")
        event_id = unsigned.compute_id()
        sig = self.sign(bytes.fromhex(event_id)).hex()
        return replace(unsigned, id=event_id, sig=sig)


def completion_event(
    origin: NostrEvent,
    origin_relay: str,
    proof: bytes,
    block_height: int,
    block_hash: str,
    created_at: int | None = None,
) -> NostrEvent:
    """Build the unsigned NIP-03 event announcing a confirmed proof.

    Args:
        origin: The event that was timestamped
        origin_relay: Relay the event was received from
        proof: Serialized OpenTimestamps proof
        block_height: Chain tip height at publication time
        block_hash: Chain tip hash at publication time
        created_at: Unix timestamp (defaults to now)
    """
    return NostrEvent(
        pubkey="",
        created_at=int(time.time()) if created_at is None else created_at,
        kind=KIND_OTS_ATTESTATION,
        tags=[
            ["e", origin.id, origin_relay],
            ["p", origin.pubkey],
            ["block", str(block_height), block_hash],
        ],
        content=base64.b64encode(proof).decode("ascii"),
    )
