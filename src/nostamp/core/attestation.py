# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Attestation service - calendar submission and proof upgrades.

The lifecycle loops only see the ``AttestationService`` protocol. The
concrete ``CalendarAttestationService`` talks to OpenTimestamps calendar
servers through ``opentimestamps.calendar.RemoteCalendar``, whose HTTP calls
block, so each call runs in a worker thread under an asyncio timeout.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from opentimestamps.calendar import CommitmentNotFoundError, RemoteCalendar
from opentimestamps.core.timestamp import Timestamp

from .exceptions import AttestationError
from .proofs import DIGEST_LENGTH, AttestationSequence

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "nostamp"


@runtime_checkable
class AttestationService(Protocol):
    """Submits digests to a calendar and upgrades pending sequences."""

    async def stamp(self, calendar_url: str, digest: bytes) -> Timestamp:
        """Submit a digest; returns a timestamp rooted at the digest."""
        ...

    async def upgrade(
        self, sequence: AttestationSequence, digest: bytes, timeout: float
    ) -> Timestamp:
        """Ask the sequence's calendar for a more complete path.

        Returns a timestamp rooted at ``digest`` containing the sequence and
        whatever the calendar added below its commitment.
        """
        ...


class CalendarAttestationService:
    """AttestationService backed by OpenTimestamps calendar servers."""

    def __init__(
        self,
        stamp_timeout: float = 60.0,
        user_agent: str = DEFAULT_USER_AGENT,
        calendar_factory: Callable[..., Any] = RemoteCalendar,
    ):
        """
        Args:
            stamp_timeout: Bound on a digest submission, in seconds
            user_agent: User-Agent sent to calendar servers
            calendar_factory: Builds a calendar client from (url, user_agent=...)
        """
        self.stamp_timeout = stamp_timeout
        self.user_agent = user_agent
        self._calendar_factory = calendar_factory

    def _calendar(self, url: str):
        return self._calendar_factory(url.rstrip("/"), user_agent=self.user_agent)

    async def stamp(self, calendar_url: str, digest: bytes) -> Timestamp:
        if len(digest) != DIGEST_LENGTH:
            raise AttestationError(f"Digest must be {DIGEST_LENGTH} bytes", calendar_url=calendar_url)

        calendar = self._calendar(calendar_url)
        try:
            timestamp = await asyncio.wait_for(
                asyncio.to_thread(calendar.submit, digest, self.stamp_timeout),
                timeout=self.stamp_timeout,
            )
        except asyncio.TimeoutError as e:
            raise AttestationError(
                f"Calendar submission timed out after {self.stamp_timeout}s",
                calendar_url=calendar_url,
            ) from e
        except Exception as e:
            raise AttestationError(f"Calendar submission failed: {e}", calendar_url=calendar_url) from e

        if timestamp.msg != digest:
            raise AttestationError("Calendar answered for a different digest", calendar_url=calendar_url)
        return timestamp

    async def upgrade(
        self, sequence: AttestationSequence, digest: bytes, timeout: float
    ) -> Timestamp:
        calendar_url = sequence.calendar_url
        if calendar_url is None:
            raise AttestationError("Only pending sequences can be upgraded")

        calendar = self._calendar(calendar_url)
        try:
            upgraded = await asyncio.wait_for(
                asyncio.to_thread(calendar.get_timestamp, sequence.commitment, timeout),
                timeout=timeout,
            )
        except CommitmentNotFoundError as e:
            raise AttestationError(
                f"Commitment not yet known to calendar: {e}", calendar_url=calendar_url
            ) from e
        except asyncio.TimeoutError as e:
            raise AttestationError(
                f"Upgrade timed out after {timeout}s", calendar_url=calendar_url
            ) from e
        except Exception as e:
            raise AttestationError(f"Upgrade failed: {e}", calendar_url=calendar_url) from e

        root = sequence.to_timestamp(digest)
        try:
            sequence.leaf_of(root).merge(upgraded)
        except ValueError as e:
            raise AttestationError(
                f"Calendar answered for a different commitment: {e}", calendar_url=calendar_url
            ) from e

        logger.debug(f"Calendar {calendar_url} returned an upgrade for {digest.hex()[:16]}...")
        return root
