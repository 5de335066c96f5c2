"""Tests for nostamp.core.chain_tip - Esplora chain tip oracle."""

from __future__ import annotations

import asyncio

import aiohttp
import pytest

from nostamp.core.chain_tip import ChainTip, ChainTipOracle, EsploraChainTipOracle
from nostamp.core.exceptions import ChainTipError

BASE = "https://esplora.example/api"
TIP_HASH = "0000000000000000000" + "1f" * 22 + "a"


class FakeResponse:
    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body

    async def text(self) -> str:
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, responses: dict):
        self.responses = responses
        self.requested: list[str] = []
        self.timeouts: list[aiohttp.ClientTimeout] = []
        self.closed = False

    def get(self, url: str, timeout: aiohttp.ClientTimeout | None = None):
        self.requested.append(url)
        self.timeouts.append(timeout)
        result = self.responses[url]
        if isinstance(result, Exception):
            raise result
        return FakeResponse(*result)

    async def close(self) -> None:
        self.closed = True


def esplora(height=(200, "840123\n"), tip_hash=(200, TIP_HASH)) -> FakeSession:
    return FakeSession(
        {
            f"{BASE}/blocks/tip/height": height,
            f"{BASE}/blocks/tip/hash": tip_hash,
        }
    )


class TestEsploraChainTipOracle:
    """Two GETs, both bounded, both validated."""

    def test_satisfies_protocol(self):
        assert isinstance(EsploraChainTipOracle(BASE), ChainTipOracle)

    async def test_get_tip(self):
        session = esplora()
        oracle = EsploraChainTipOracle(BASE + "/", timeout=7, session=session)

        tip = await oracle.get_tip()

        assert tip == ChainTip(height=840123, hash=TIP_HASH)
        assert session.requested == [f"{BASE}/blocks/tip/height", f"{BASE}/blocks/tip/hash"]
        assert all(t.total == 7 for t in session.timeouts)

    async def test_hash_lowercased(self):
        oracle = EsploraChainTipOracle(BASE, session=esplora(tip_hash=(200, TIP_HASH.upper())))

        assert (await oracle.get_tip()).hash == TIP_HASH

    async def test_http_error(self):
        oracle = EsploraChainTipOracle(BASE, session=esplora(height=(503, "busy")))

        with pytest.raises(ChainTipError) as exc_info:
            await oracle.get_tip()

        assert exc_info.value.details["status"] == 503

    async def test_second_request_failure_fails_lookup(self):
        oracle = EsploraChainTipOracle(BASE, session=esplora(tip_hash=(500, "")))

        with pytest.raises(ChainTipError):
            await oracle.get_tip()

    async def test_timeout(self):
        oracle = EsploraChainTipOracle(BASE, session=esplora(height=asyncio.TimeoutError()))

        with pytest.raises(ChainTipError, match="timed out"):
            await oracle.get_tip()

    async def test_network_error(self):
        oracle = EsploraChainTipOracle(
            BASE, session=esplora(height=aiohttp.ClientConnectionError("refused"))
        )

        with pytest.raises(ChainTipError, match="refused"):
            await oracle.get_tip()

    @pytest.mark.parametrize("body", ["tip", "-1", "12.5"])
    async def test_bad_height(self, body):
        oracle = EsploraChainTipOracle(BASE, session=esplora(height=(200, body)))

        with pytest.raises(ChainTipError):
            await oracle.get_tip()

    @pytest.mark.parametrize("body", ["abc", "zz" * 32, TIP_HASH + "00"])
    async def test_bad_hash(self, body):
        oracle = EsploraChainTipOracle(BASE, session=esplora(tip_hash=(200, body)))

        with pytest.raises(ChainTipError):
            await oracle.get_tip()

    async def test_close_keeps_shared_session(self):
        session = esplora()
        oracle = EsploraChainTipOracle(BASE, session=session)

        await oracle.close()

        assert session.closed is False
