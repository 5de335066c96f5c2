# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Nostamp Core - record store, proofs, and the external service boundaries."""

from .config import NotarySettings, load_settings
from .exceptions import (
    NostampException,
    ConfigException,
    StorageException,
    NotFoundError,
    RecordFormatError,
    AttestationError,
    ChainTipError,
    RelayError,
)
from .logging import (
    configure_logging,
    correlation_context,
    get_correlation_id,
)
from .store import ArtifactKind, PendingAttestation, RecordStore

__all__ = [
    "NotarySettings",
    "load_settings",
    "NostampException",
    "ConfigException",
    "StorageException",
    "NotFoundError",
    "RecordFormatError",
    "AttestationError",
    "ChainTipError",
    "RelayError",
    "configure_logging",
    "correlation_context",
    "get_correlation_id",
    "ArtifactKind",
    "PendingAttestation",
    "RecordStore",
]
