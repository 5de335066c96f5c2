# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Filesystem record store for pending attestations.

Each record is three files in the data directory, named by a fixed
prefix/suffix pair around the 64-hex event id:

    time-<id>.ots     proof (OpenTimestamps detached timestamp)
    relay-<id>.txt    relay the event was received from
    event-<id>.json   the event itself

The directory doubles as the work queue: a record exists for as long as its
proof file does. There is no locking. The ingestion loop only creates records
and the maturation loop only rewrites and deletes them.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from opentimestamps.core.timestamp import DetachedTimestampFile

from .events import NostrEvent, is_hex
from .exceptions import NotFoundError, RecordFormatError, StorageException
from .proofs import parse_proof, serialize_proof

logger = logging.getLogger(__name__)

ID_LENGTH = 64
TEMP_PREFIX = "."
TEMP_SUFFIX = ".tmp"


class ArtifactKind(Enum):
    """The three files making up a record, as (prefix, suffix) pairs."""

    PROOF = ("time-", ".ots")
    ENDPOINT = ("relay-", ".txt")
    MESSAGE = ("event-", ".json")

    @property
    def prefix(self) -> str:
        return self.value[0]

    @property
    def suffix(self) -> str:
        return self.value[1]

    def filename(self, record_id: str) -> str:
        return f"{self.prefix}{record_id}{self.suffix}"

    def parse_filename(self, filename: str) -> str | None:
        """Extract a valid record id from a filename of this kind, if any."""
        if not (filename.startswith(self.prefix) and filename.endswith(self.suffix)):
            return None
        record_id = filename[len(self.prefix) : len(filename) - len(self.suffix)]
        if not is_hex(record_id, ID_LENGTH):
            return None
        return record_id.lower()


def normalize_id(record_id: str) -> str:
    """Validate a record id and return it lowercased.

    Raises:
        RecordFormatError: If the id does not decode to exactly 32 bytes.
    """
    if not is_hex(record_id, ID_LENGTH):
        raise RecordFormatError("Record id must be 64 hex characters", field="id", value=record_id)
    return record_id.lower()


@dataclass
class PendingAttestation:
    """A record loaded from the store."""

    id: str
    message: NostrEvent
    endpoint: str
    proof: DetachedTimestampFile

    @property
    def digest(self) -> bytes:
        return bytes.fromhex(self.id)


class RecordStore:
    """Keyed store of record artifacts in a single directory."""

    def __init__(self, base_path: str | Path):
        """
        Initialize the store, creating the directory if needed.

        Args:
            base_path: Directory holding the record files
        """
        self._base_path = Path(base_path)
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base_path

    def path_for(self, record_id: str, kind: ArtifactKind) -> Path:
        return self._base_path / kind.filename(normalize_id(record_id))

    # -------------------------------------------------------------------------
    # RAW ARTIFACTS
    # -------------------------------------------------------------------------

    def put(self, record_id: str, kind: ArtifactKind, data: bytes) -> None:
        """Write one artifact, replacing any previous content atomically."""
        path = self.path_for(record_id, kind)
        temp_path = path.with_name(f"{TEMP_PREFIX}{path.name}{TEMP_SUFFIX}")
        try:
            temp_path.write_bytes(data)
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise StorageException(f"Failed to write {path.name}: {e}", path=str(path)) from e

    def get(self, record_id: str, kind: ArtifactKind) -> bytes:
        """Read one artifact.

        Raises:
            NotFoundError: If the artifact does not exist
            StorageException: If it exists but cannot be read
        """
        path = self.path_for(record_id, kind)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(kind.name.lower(), record_id) from e
        except OSError as e:
            raise StorageException(f"Failed to read {path.name}: {e}", path=str(path)) from e

    def has(self, record_id: str, kind: ArtifactKind) -> bool:
        return self.path_for(record_id, kind).exists()

    def delete(self, record_id: str) -> bool:
        """Remove all artifacts of a record.

        Best-effort: every artifact is attempted even if an earlier one fails.
        A record left partially deleted is picked up again by the next scan
        as long as its proof file survived.

        Returns:
            True if every artifact is gone afterwards.
        """
        complete = True
        for kind in ArtifactKind:
            path = self.path_for(record_id, kind)
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to delete {path.name}: {e}")
                complete = False
        return complete

    # -------------------------------------------------------------------------
    # SCANNING
    # -------------------------------------------------------------------------

    def _ids_of_kind(self, kind: ArtifactKind) -> Iterator[str]:
        try:
            entries = os.scandir(self._base_path)
        except OSError as e:
            raise StorageException(
                f"Failed to list {self._base_path}: {e}", path=str(self._base_path)
            ) from e
        with entries:
            for entry in entries:
                record_id = kind.parse_filename(entry.name)
                if record_id is None:
                    continue
                if not entry.is_file():
                    continue
                yield record_id

    def scan(self) -> Iterator[str]:
        """Ids of all records with a proof, i.e. the maturation work queue.

        Names that do not match the proof pattern or carry a malformed id are
        skipped.
        """
        yield from self._ids_of_kind(ArtifactKind.PROOF)

    def scan_orphans(self) -> Iterator[str]:
        """Ids with a stored event and relay but no proof.

        These are records whose calendar submission failed during ingestion.
        """
        for record_id in self._ids_of_kind(ArtifactKind.MESSAGE):
            if self.has(record_id, ArtifactKind.PROOF):
                continue
            if not self.has(record_id, ArtifactKind.ENDPOINT):
                continue
            yield record_id

    # -------------------------------------------------------------------------
    # TYPED ACCESS
    # -------------------------------------------------------------------------

    def load_message(self, record_id: str) -> NostrEvent:
        message = NostrEvent.from_json(self.get(record_id, ArtifactKind.MESSAGE))
        if message.id != normalize_id(record_id):
            raise RecordFormatError(
                "Stored event id does not match record id", field="id", value=message.id
            )
        return message

    def load_endpoint(self, record_id: str) -> str:
        try:
            endpoint = self.get(record_id, ArtifactKind.ENDPOINT).decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise RecordFormatError("Stored relay is not UTF-8", field="endpoint") from e
        if not endpoint:
            raise RecordFormatError("Stored relay is empty", field="endpoint")
        return endpoint

    def load_proof(self, record_id: str) -> DetachedTimestampFile:
        return parse_proof(
            self.get(record_id, ArtifactKind.PROOF),
            expected_digest=bytes.fromhex(normalize_id(record_id)),
        )

    def load(self, record_id: str) -> PendingAttestation:
        """Load and parse all three artifacts of a record.

        Raises:
            NotFoundError: If an artifact is missing
            RecordFormatError: If an artifact is malformed
            StorageException: If an artifact cannot be read
        """
        record_id = normalize_id(record_id)
        return PendingAttestation(
            id=record_id,
            message=self.load_message(record_id),
            endpoint=self.load_endpoint(record_id),
            proof=self.load_proof(record_id),
        )

    def save_origin(self, message: NostrEvent, endpoint: str) -> None:
        """Write the event and relay artifacts of a new record."""
        self.put(message.id, ArtifactKind.MESSAGE, message.to_json().encode("utf-8"))
        self.put(message.id, ArtifactKind.ENDPOINT, endpoint.encode("utf-8"))

    def save_proof(self, record_id: str, proof: DetachedTimestampFile) -> None:
        self.put(record_id, ArtifactKind.PROOF, serialize_proof(proof))
