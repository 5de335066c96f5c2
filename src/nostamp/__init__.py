# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Nostamp - OpenTimestamps notary for Nostr events.

Nostamp watches a set of Nostr relays for events carrying a topic tag,
commits each event id to an OpenTimestamps calendar, and once the calendar
commitment is confirmed in a Bitcoin block publishes the finished proof back
to the relay the event came from (a NIP-03 kind 1040 event).

Architecture:
  Relays (subscription, deduplicated across relays)
    → Ingestion loop (event, relay, initial proof written to the record store)
    → Maturation loop (hourly upgrade against the calendar)
    → Publisher (signed completion event to the origin relay)
    → Record store (record deleted once publication is confirmed)

The record store on disk is the only state shared between the two loops.

CLI entry point: ``nostamp``
"""

__version__ = "0.1.0"

from . import (
    core as core,
)
