"""Tests for nostamp.core.store - the on-disk record store."""

from __future__ import annotations

import os

import pytest
from conftest import RELAY_A, make_event, pending_timestamp, store_record

from nostamp.core.exceptions import NotFoundError, RecordFormatError, StorageException
from nostamp.core.proofs import new_proof
from nostamp.core.store import ArtifactKind, RecordStore, normalize_id

RECORD_ID = "7e" * 32


# ============================================================================
# Naming
# ============================================================================


class TestArtifactKind:
    """Files are named <prefix><64 hex id><suffix>."""

    @pytest.mark.parametrize(
        "kind,name",
        [
            (ArtifactKind.PROOF, f"time-{RECORD_ID}.ots"),
            (ArtifactKind.ENDPOINT, f"relay-{RECORD_ID}.txt"),
            (ArtifactKind.MESSAGE, f"event-{RECORD_ID}.json"),
        ],
    )
    def test_filename(self, kind, name):
        assert kind.filename(RECORD_ID) == name
        assert kind.parse_filename(name) == RECORD_ID

    def test_parse_lowercases(self):
        assert ArtifactKind.PROOF.parse_filename(f"time-{RECORD_ID.upper()}.ots") == RECORD_ID

    @pytest.mark.parametrize(
        "name",
        [
            "time-abc.ots",
            f"time-{'zz' * 32}.ots",
            f"relay-{RECORD_ID}.txt",
            f"time-{RECORD_ID}.ots.bak",
            f".time-{RECORD_ID}.ots.tmp",
            "README",
        ],
    )
    def test_parse_rejects(self, name):
        assert ArtifactKind.PROOF.parse_filename(name) is None

    def test_normalize_id(self):
        assert normalize_id(RECORD_ID.upper()) == RECORD_ID
        with pytest.raises(RecordFormatError):
            normalize_id("7e" * 31)


# ============================================================================
# Raw Artifacts
# ============================================================================


class TestRawArtifacts:
    def test_creates_directory(self, tmp_path):
        store = RecordStore(tmp_path / "nested" / "data")
        assert store.base_path.is_dir()

    def test_put_get(self, store):
        store.put(RECORD_ID, ArtifactKind.ENDPOINT, b"wss://relay.example")

        assert store.get(RECORD_ID, ArtifactKind.ENDPOINT) == b"wss://relay.example"
        assert store.has(RECORD_ID, ArtifactKind.ENDPOINT)
        assert (store.base_path / f"relay-{RECORD_ID}.txt").is_file()

    def test_put_replaces_without_temp_files(self, store):
        store.put(RECORD_ID, ArtifactKind.PROOF, b"first")
        store.put(RECORD_ID, ArtifactKind.PROOF, b"second")

        assert store.get(RECORD_ID, ArtifactKind.PROOF) == b"second"
        assert os.listdir(store.base_path) == [f"time-{RECORD_ID}.ots"]

    def test_get_missing(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.get(RECORD_ID, ArtifactKind.PROOF)

        assert exc_info.value.resource_type == "proof"

    def test_put_failure_raises_storage_exception(self, store):
        # A directory where the file should go makes the rename fail
        (store.base_path / f"time-{RECORD_ID}.ots").mkdir()

        with pytest.raises(StorageException):
            store.put(RECORD_ID, ArtifactKind.PROOF, b"data")

        assert not (store.base_path / f".time-{RECORD_ID}.ots.tmp").exists()

    def test_invalid_id_rejected(self, store):
        with pytest.raises(RecordFormatError):
            store.put("../escape", ArtifactKind.PROOF, b"data")

    def test_delete_removes_all_artifacts(self, store, event):
        store_record(store, event)

        assert store.delete(event.id) is True
        assert os.listdir(store.base_path) == []

    def test_delete_tolerates_missing(self, store, event):
        store.save_origin(event, RELAY_A)

        assert store.delete(event.id) is True
        assert store.delete(event.id) is True


# ============================================================================
# Scanning
# ============================================================================


class TestScanning:
    def test_scan_yields_ids_with_proof(self, store, author_keys):
        first = make_event(author_keys, content="one")
        second = make_event(author_keys, content="two")
        store_record(store, first)
        store_record(store, second)

        assert sorted(store.scan()) == sorted([first.id, second.id])

    def test_scan_ignores_foreign_and_malformed_names(self, store, event):
        store_record(store, event)
        (store.base_path / "time-nothex.ots").write_bytes(b"")
        (store.base_path / "notes.txt").write_text("hello")
        (store.base_path / f".time-{event.id}.ots.tmp").write_bytes(b"")
        (store.base_path / f"time-{'aa' * 32}.ots").mkdir()

        assert list(store.scan()) == [event.id]

    def test_scan_empty(self, store):
        assert list(store.scan()) == []

    def test_scan_orphans(self, store, author_keys):
        complete = make_event(author_keys, content="complete")
        orphan = make_event(author_keys, content="orphan")
        no_relay = make_event(author_keys, content="no relay")
        store_record(store, complete)
        store.save_origin(orphan, RELAY_A)
        store.put(no_relay.id, ArtifactKind.MESSAGE, no_relay.to_json().encode())

        assert list(store.scan_orphans()) == [orphan.id]


# ============================================================================
# Typed Access
# ============================================================================


class TestTypedAccess:
    def test_load_record(self, store, event):
        store_record(store, event)

        record = store.load(event.id)

        assert record.id == event.id
        assert record.message == event
        assert record.endpoint == RELAY_A
        assert record.digest == event.digest
        assert record.proof.timestamp == pending_timestamp(event.digest)

    def test_load_accepts_uppercase_id(self, store, event):
        store_record(store, event)

        assert store.load(event.id.upper()).id == event.id

    def test_load_missing_relay(self, store, event):
        store_record(store, event)
        os.remove(store.path_for(event.id, ArtifactKind.ENDPOINT))

        with pytest.raises(NotFoundError):
            store.load(event.id)

    def test_empty_relay_rejected(self, store, event):
        store_record(store, event)
        store.put(event.id, ArtifactKind.ENDPOINT, b"  \n")

        with pytest.raises(RecordFormatError):
            store.load_endpoint(event.id)

    def test_endpoint_is_stripped(self, store, event):
        store.put(event.id, ArtifactKind.ENDPOINT, b"wss://relay.example\n")

        assert store.load_endpoint(event.id) == "wss://relay.example"

    def test_corrupt_message_rejected(self, store, event):
        store_record(store, event)
        store.put(event.id, ArtifactKind.MESSAGE, b"{truncated")

        with pytest.raises(RecordFormatError):
            store.load(event.id)

    def test_message_for_other_id_rejected(self, store, event, author_keys):
        other = make_event(author_keys, content="other")
        store_record(store, event)
        store.put(event.id, ArtifactKind.MESSAGE, other.to_json().encode())

        with pytest.raises(RecordFormatError):
            store.load_message(event.id)

    def test_proof_for_other_digest_rejected(self, store, event, author_keys):
        other = make_event(author_keys, content="other")
        store_record(store, event)
        store.save_proof(event.id, new_proof(other.digest, pending_timestamp(other.digest)))

        with pytest.raises(RecordFormatError):
            store.load_proof(event.id)

    def test_save_origin_writes_event_and_relay(self, store, event):
        store.save_origin(event, RELAY_A)

        assert store.load_message(event.id) == event
        assert store.load_endpoint(event.id) == RELAY_A
        assert not store.has(event.id, ArtifactKind.PROOF)
