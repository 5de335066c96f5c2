# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Chain tip oracle - current best block height and hash.

The Esplora implementation issues two GETs (``/blocks/tip/height`` and
``/blocks/tip/hash``), each bounded by a timeout. Either failing fails the
whole lookup.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import aiohttp

from .events import is_hex
from .exceptions import ChainTipError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainTip:
    """Best block known to the explorer."""

    height: int
    hash: str


@runtime_checkable
class ChainTipOracle(Protocol):
    async def get_tip(self) -> ChainTip:
        """Fetch the current chain tip; raises ChainTipError on failure."""
        ...


class EsploraChainTipOracle:
    """ChainTipOracle backed by an Esplora HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        session: aiohttp.ClientSession | None = None,
    ):
        """
        Args:
            base_url: Esplora API base, e.g. https://blockstream.info/api
            timeout: Bound on each request, in seconds
            session: Shared client session (one is created lazily otherwise)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _fetch_text(self, path: str) -> str:
        url = f"{self.base_url}{path}"
        session = await self._get_session()
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                if response.status != 200:
                    raise ChainTipError(
                        f"Explorer returned HTTP {response.status} for {url}",
                        details={"url": url, "status": response.status},
                    )
                return (await response.text()).strip()
        except asyncio.TimeoutError as e:
            raise ChainTipError(f"Explorer request timed out: {url}", details={"url": url}) from e
        except aiohttp.ClientError as e:
            raise ChainTipError(f"Network error fetching {url}: {e}", details={"url": url}) from e

    async def get_tip(self) -> ChainTip:
        height_text = await self._fetch_text("/blocks/tip/height")
        block_hash = await self._fetch_text("/blocks/tip/hash")

        try:
            height = int(height_text)
        except ValueError as e:
            raise ChainTipError(f"Explorer returned a non-numeric height: {height_text!r}") from e
        if height < 0:
            raise ChainTipError(f"Explorer returned a negative height: {height}")
        if not is_hex(block_hash, 64):
            raise ChainTipError(f"Explorer returned a malformed block hash: {block_hash!r}")

        return ChainTip(height=height, hash=block_hash.lower())

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
